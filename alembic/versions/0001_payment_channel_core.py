"""payment channel core tables

Revision ID: 0001_payment_channel_core
Revises:
Create Date: 2026-10-19 09:12:41.204311

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001_payment_channel_core'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_pk():
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _created_at():
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade():
    # ─── DIRECTORY ───
    op.create_table(
        "organizations",
        _uuid_pk(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("wallet_address", sa.String(length=64), nullable=False, unique=True),
        _created_at(),
    )

    op.create_table(
        "workers",
        _uuid_pk(),
        sa.Column(
            "organization_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("wallet_address", sa.String(length=64), nullable=False),
        sa.Column(
            "employment_status",
            sa.String(length=16),
            server_default=sa.text("'active'"),
            nullable=False,
        ),
        _created_at(),
        sa.UniqueConstraint("organization_id", "wallet_address", name="uq_workers_org_wallet"),
    )
    op.create_index("ix_workers_wallet", "workers", ["wallet_address"])

    # ─── CHANNELS ───
    op.create_table(
        "payment_channels",
        _uuid_pk(),
        sa.Column("channel_id", sa.String(length=64), nullable=True, unique=True),
        sa.Column(
            "organization_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "worker_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("workers.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("job_name", sa.String(length=255), nullable=False),
        sa.Column("hourly_rate", sa.Numeric(20, 6), nullable=False),
        sa.Column("max_daily_hours", sa.Numeric(6, 2), server_default=sa.text("8"), nullable=False),
        sa.Column("escrow_funded_amount", sa.Numeric(20, 6), server_default=sa.text("0"), nullable=False),
        sa.Column("accumulated_balance", sa.Numeric(20, 6), server_default=sa.text("0"), nullable=False),
        sa.Column("on_chain_balance", sa.Numeric(20, 6), server_default=sa.text("0"), nullable=False),
        sa.Column("hours_accumulated", sa.Numeric(12, 6), server_default=sa.text("0"), nullable=False),
        sa.Column("status", sa.String(length=16), server_default=sa.text("'active'"), nullable=False),
        sa.Column("settle_delay_seconds", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("expiration_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closure_tx_hash", sa.String(length=64), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_ledger_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("validation_attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("last_validation_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "status IN ('active', 'closing', 'closed')", name="ck_payment_channels_status"
        ),
        sa.CheckConstraint("accumulated_balance >= 0", name="ck_payment_channels_balance_nonneg"),
    )
    op.create_index("ix_payment_channels_org_status", "payment_channels", ["organization_id", "status"])
    op.create_index("ix_payment_channels_worker", "payment_channels", ["worker_id"])
    op.create_index("ix_payment_channels_last_sync", "payment_channels", ["last_ledger_sync"])

    # ─── SESSIONS ───
    op.create_table(
        "work_sessions",
        _uuid_pk(),
        sa.Column(
            "worker_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("workers.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "channel_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("payment_channels.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("clock_in", sa.DateTime(timezone=True), nullable=False),
        sa.Column("clock_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hourly_rate", sa.Numeric(20, 6), nullable=False),
        sa.Column("hours_worked", sa.Numeric(12, 6), nullable=True),
        sa.Column("total_amount", sa.Numeric(20, 6), nullable=True),
        sa.Column("session_status", sa.String(length=16), server_default=sa.text("'active'"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index(
        "uq_work_sessions_one_active",
        "work_sessions",
        ["worker_id", "channel_id"],
        unique=True,
        postgresql_where=sa.text("session_status = 'active'"),
    )
    op.create_index("ix_work_sessions_channel_clock_in", "work_sessions", ["channel_id", "clock_in"])

    # ─── NOTIFICATIONS ───
    op.create_table(
        "worker_notifications",
        _uuid_pk(),
        sa.Column("worker_wallet_address", sa.String(length=64), nullable=False),
        sa.Column("organization_wallet_address", sa.String(length=64), nullable=True),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("channel_id", sa.String(length=64), nullable=True),
        sa.Column("job_name", sa.String(length=255), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closure_approved", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("closure_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closure_tx_hash", sa.String(length=64), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_worker_notifications_wallet_read",
        "worker_notifications",
        ["worker_wallet_address", "is_read"],
    )
    op.create_index("ix_worker_notifications_channel", "worker_notifications", ["channel_id"])
    op.create_index(
        "uq_worker_notifications_pending_closure",
        "worker_notifications",
        ["channel_id"],
        unique=True,
        postgresql_where=sa.text("type = 'closure_request' AND closure_approved = false"),
    )

    op.create_table(
        "organization_notifications",
        _uuid_pk(),
        sa.Column(
            "organization_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("notification_type", sa.String(length=50), nullable=False),
        sa.Column("channel_id", sa.String(length=64), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "details_json",
            postgresql.JSONB,
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        sa.Column("is_read", sa.Boolean(), server_default=sa.false(), nullable=False),
        _created_at(),
    )
    op.create_index(
        "ix_org_notifications_org_read",
        "organization_notifications",
        ["organization_id", "is_read"],
    )
    op.create_index(
        "ix_org_notifications_type",
        "organization_notifications",
        ["notification_type", "created_at"],
    )

    # ─── AUDIT ───
    op.create_table(
        "channel_audit_logs",
        _uuid_pk(),
        _created_at(),
        sa.Column("action", sa.String(length=96), nullable=False),
        sa.Column("channel_ref", sa.String(length=64), nullable=True),
        sa.Column("actor_wallet", sa.String(length=64), nullable=True),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column(
            "details_json",
            postgresql.JSONB,
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
    )
    op.create_index("ix_channel_audit_channel", "channel_audit_logs", ["channel_ref"])
    op.create_index("ix_channel_audit_action", "channel_audit_logs", ["action"])
    op.create_index("ix_channel_audit_created", "channel_audit_logs", ["created_at"])


def downgrade():
    op.drop_table("channel_audit_logs")
    op.drop_table("organization_notifications")
    op.drop_index("uq_worker_notifications_pending_closure", table_name="worker_notifications")
    op.drop_table("worker_notifications")
    op.drop_index("uq_work_sessions_one_active", table_name="work_sessions")
    op.drop_table("work_sessions")
    op.drop_table("payment_channels")
    op.drop_table("workers")
    op.drop_table("organizations")
