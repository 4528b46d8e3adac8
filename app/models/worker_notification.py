#app/models/worker_notification.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import String, DateTime, Boolean, Index, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class WorkerNotification(Base):
    """
    Worker inbox. Rows of type closure_request are the closure-request handshake:
    the organization asks, the worker approves, the worker's wallet closes.
    """

    __tablename__ = "worker_notifications"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    worker_wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)
    organization_wallet_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    type: Mapped[str] = mapped_column(String(50), nullable=False)
    channel_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    job_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=sa.false())
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # closure request tracking
    closure_approved: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa.false()
    )
    closure_approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    closure_tx_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_worker_notifications_wallet_read", "worker_wallet_address", "is_read"),
        Index("ix_worker_notifications_channel", "channel_id"),
        # one unapproved closure request per channel
        Index(
            "uq_worker_notifications_pending_closure",
            "channel_id",
            unique=True,
            postgresql_where=text("type = 'closure_request' AND closure_approved = false"),
            sqlite_where=text("type = 'closure_request' AND closure_approved = 0"),
        ),
    )
