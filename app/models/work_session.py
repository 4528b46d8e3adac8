#app/models/work_session.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import String, DateTime, Numeric, ForeignKey, Index, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.enums import SessionStatus


class WorkSession(Base):
    """
    One clock-in/clock-out cycle against a channel.

    hourly_rate is copied from the channel at clock-in so later rate edits never
    reprice work already started. Terminal once completed/timeout.
    """

    __tablename__ = "work_sessions"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    worker_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        ForeignKey("workers.id", ondelete="RESTRICT"),
        nullable=False,
    )
    channel_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        ForeignKey("payment_channels.id", ondelete="RESTRICT"),
        nullable=False,
    )

    clock_in: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    clock_out: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    hours_worked: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 6), nullable=True)
    total_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6), nullable=True)

    session_status: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default=text(f"'{SessionStatus.active.value}'")
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    channel = relationship("PaymentChannel", back_populates="sessions")
    worker = relationship("Worker")

    __table_args__ = (
        # at most one active session per (worker, channel)
        Index(
            "uq_work_sessions_one_active",
            "worker_id",
            "channel_id",
            unique=True,
            postgresql_where=text("session_status = 'active'"),
            sqlite_where=text("session_status = 'active'"),
        ),
        Index("ix_work_sessions_channel_clock_in", "channel_id", "clock_in"),
    )
