#app/models/payment_channel.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import (
    String,
    DateTime,
    Integer,
    Numeric,
    ForeignKey,
    CheckConstraint,
    Index,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.enums import ChannelStatus


class PaymentChannel(Base):
    """
    Local view of one on-chain payment channel (organization -> worker).

    Ledger-derived fields (escrow, on_chain_balance, settle delay, expiration)
    are overwritten by the reconciler; accumulated_balance is ours alone and only
    moves through clock-out (up) and a verified closure (to zero).

    Never deleted: closed rows stay as the audit record of what was paid.
    """

    __tablename__ = "payment_channels"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    # 64-char hex ledger id; NULL until the create transaction is confirmed
    channel_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)

    organization_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        ForeignKey("organizations.id", ondelete="RESTRICT"),
        nullable=False,
    )
    worker_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        ForeignKey("workers.id", ondelete="RESTRICT"),
        nullable=False,
    )

    job_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Economics
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    max_daily_hours: Mapped[Decimal] = mapped_column(
        Numeric(6, 2), nullable=False, server_default=text("8")
    )
    escrow_funded_amount: Mapped[Decimal] = mapped_column(
        Numeric(20, 6), nullable=False, server_default=text("0")
    )
    accumulated_balance: Mapped[Decimal] = mapped_column(
        Numeric(20, 6), nullable=False, server_default=text("0")
    )
    on_chain_balance: Mapped[Decimal] = mapped_column(
        Numeric(20, 6), nullable=False, server_default=text("0")
    )
    hours_accumulated: Mapped[Decimal] = mapped_column(
        Numeric(12, 6), nullable=False, server_default=text("0")
    )

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default=text(f"'{ChannelStatus.active.value}'")
    )
    settle_delay_seconds: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    expiration_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    closure_tx_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_ledger_sync: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    validation_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    last_validation_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    organization = relationship("Organization", back_populates="channels")
    worker = relationship("Worker", back_populates="channels")
    sessions = relationship("WorkSession", back_populates="channel")

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'closing', 'closed')", name="ck_payment_channels_status"
        ),
        CheckConstraint("accumulated_balance >= 0", name="ck_payment_channels_balance_nonneg"),
        Index("ix_payment_channels_org_status", "organization_id", "status"),
        Index("ix_payment_channels_worker", "worker_id"),
        Index("ix_payment_channels_last_sync", "last_ledger_sync"),
    )

    @property
    def available_escrow(self) -> Decimal:
        return Decimal(self.escrow_funded_amount) - Decimal(self.accumulated_balance)
