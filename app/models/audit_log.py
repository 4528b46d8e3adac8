from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

import sqlalchemy as sa
from sqlalchemy import String, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType


class ChannelAuditLog(Base):
    """
    Append-only trail of engine actions against channels and sessions.
    - Never UPDATE
    - Written in the same transaction as the change it describes
    """
    __tablename__ = "channel_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    action: Mapped[str] = mapped_column(String(96), nullable=False)  # e.g., CLOSURE_PROPOSED
    channel_ref: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)  # ledger id or local uuid
    actor_wallet: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    details_json: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_channel_audit_channel", "channel_ref"),
        Index("ix_channel_audit_action", "action"),
        Index("ix_channel_audit_created", "created_at"),
    )
