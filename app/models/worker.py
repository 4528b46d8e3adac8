#app/models/worker.py
from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy import String, DateTime, ForeignKey, UniqueConstraint, Index, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.enums import EmploymentStatus


class Worker(Base):
    __tablename__ = "workers"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    organization_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)

    employment_status: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default=text(f"'{EmploymentStatus.active.value}'")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    organization = relationship("Organization", back_populates="workers")
    channels = relationship("PaymentChannel", back_populates="worker")

    __table_args__ = (
        UniqueConstraint("organization_id", "wallet_address", name="uq_workers_org_wallet"),
        Index("ix_workers_wallet", "wallet_address"),
    )
