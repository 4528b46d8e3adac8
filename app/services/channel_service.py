# app/services/channel_service.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.errors import (
    ErrorCodes,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from app.core.validators import require_channel_id, require_wallet_address
from app.ledger.templates import build_create_template
from app.models.enums import ChannelStatus, EmploymentStatus
from app.models.organization import Organization
from app.models.payment_channel import PaymentChannel
from app.models.worker import Worker
from app.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)


def _positive(value: Decimal, field: str) -> Decimal:
    d = Decimal(str(value))
    if d <= 0:
        raise ValidationError(ErrorCodes.INVALID_INPUT, f"{field} must be greater than zero.", {"field": field})
    return d


class ChannelService:
    """
    Channel record store: the authoritative local view of each channel.
    Every other service reads channels through here.
    """

    # ---------------------------
    # READS
    # ---------------------------

    def get_organization(self, db: Session, wallet_address: str) -> Organization:
        org = db.execute(
            select(Organization).where(Organization.wallet_address == wallet_address)
        ).scalar_one_or_none()
        if not org:
            raise NotFoundError(
                ErrorCodes.ORGANIZATION_NOT_FOUND,
                "Organization not found for wallet address.",
                {"walletAddress": wallet_address},
            )
        return org

    def find_by_channel_id(self, db: Session, channel_id: str) -> Optional[PaymentChannel]:
        return db.execute(
            select(PaymentChannel).where(PaymentChannel.channel_id == channel_id.upper())
        ).scalar_one_or_none()

    def get_by_channel_id(self, db: Session, channel_id: str) -> PaymentChannel:
        ch = self.find_by_channel_id(db, channel_id)
        if not ch:
            raise NotFoundError(
                ErrorCodes.CHANNEL_NOT_FOUND,
                "Payment channel not found.",
                {"channelId": channel_id},
            )
        return ch

    def get_by_id(self, db: Session, local_id: uuid.UUID) -> PaymentChannel:
        ch = db.get(PaymentChannel, local_id)
        if not ch:
            raise NotFoundError(
                ErrorCodes.CHANNEL_NOT_FOUND,
                "Payment channel not found.",
                {"id": str(local_id)},
            )
        return ch

    def resolve(self, db: Session, ref: str) -> PaymentChannel:
        """Accepts the ledger channel id or the local record id."""
        if ref and len(ref) == 64:
            return self.get_by_channel_id(db, require_channel_id(ref))
        try:
            local_id = uuid.UUID(str(ref))
        except (TypeError, ValueError):
            raise ValidationError(
                ErrorCodes.INVALID_CHANNEL_ID,
                "Channel reference must be a ledger channel id or a record id.",
                {"channelId": ref},
            )
        return self.get_by_id(db, local_id)

    def get_for_update(self, db: Session, local_id: uuid.UUID) -> PaymentChannel:
        """
        Lock the channel row (FOR UPDATE) so balance changes serialize.
        """
        ch = (
            db.execute(
                select(PaymentChannel).where(PaymentChannel.id == local_id).with_for_update()
            )
            .scalars()
            .one_or_none()
        )
        if not ch:
            raise NotFoundError(ErrorCodes.CHANNEL_NOT_FOUND, "Payment channel not found.", {"id": str(local_id)})
        return ch

    def list_organization_channels(
        self,
        db: Session,
        organization_wallet: str,
        status: Optional[str] = None,
    ) -> List[PaymentChannel]:
        org = self.get_organization(db, organization_wallet)
        q = select(PaymentChannel).where(PaymentChannel.organization_id == org.id)
        if status:
            q = q.where(PaymentChannel.status == status)
        return list(db.execute(q.order_by(PaymentChannel.created_at.desc())).scalars().all())

    def list_worker_channels(self, db: Session, worker_wallet: str) -> List[PaymentChannel]:
        return list(
            db.execute(
                select(PaymentChannel)
                .join(Worker, PaymentChannel.worker_id == Worker.id)
                .where(Worker.wallet_address == worker_wallet)
                .order_by(PaymentChannel.created_at.desc())
            )
            .scalars()
            .all()
        )

    # ---------------------------
    # MUTATIONS
    # ---------------------------

    def register_channel(
        self,
        db: Session,
        *,
        organization_wallet: str,
        worker_wallet: str,
        worker_name: str,
        job_name: Optional[str],
        hourly_rate: Decimal,
        funding_amount: Decimal,
        channel_id: Optional[str] = None,
        settle_delay_seconds: int = 0,
        max_daily_hours: Optional[Decimal] = None,
        request_id: Optional[str] = None,
    ) -> PaymentChannel:
        """
        Persist the channel record once the external create transaction succeeded.
        The worker record is created on first sight.
        """
        require_wallet_address(organization_wallet, "organizationWalletAddress")
        require_wallet_address(worker_wallet, "workerWalletAddress")
        if channel_id:
            channel_id = require_channel_id(channel_id)
        if not worker_name or not worker_name.strip():
            raise ValidationError(ErrorCodes.INVALID_INPUT, "workerName is required.", {"field": "workerName"})
        rate = _positive(hourly_rate, "hourlyRate")
        funding = _positive(funding_amount, "fundingAmount")
        daily = (
            _positive(max_daily_hours, "maxDailyHours")
            if max_daily_hours is not None
            else Decimal(str(get_settings().default_max_daily_hours))
        )
        if daily > 24:
            raise ValidationError(ErrorCodes.INVALID_INPUT, "maxDailyHours cannot exceed 24.", {"field": "maxDailyHours"})

        org = self.get_organization(db, organization_wallet)

        if channel_id and self.find_by_channel_id(db, channel_id):
            raise StateConflictError(
                ErrorCodes.CHANNEL_ALREADY_EXISTS,
                "A channel record with this ledger id already exists.",
                {"channelId": channel_id},
            )

        worker = db.execute(
            select(Worker).where(
                Worker.organization_id == org.id,
                Worker.wallet_address == worker_wallet,
            )
        ).scalar_one_or_none()
        if not worker:
            worker = Worker(
                organization_id=org.id,
                full_name=worker_name.strip(),
                wallet_address=worker_wallet,
                employment_status=EmploymentStatus.active.value,
            )
            db.add(worker)
            db.flush()

        ch = PaymentChannel(
            channel_id=channel_id,
            organization_id=org.id,
            worker_id=worker.id,
            job_name=(job_name or "Unnamed Job").strip(),
            hourly_rate=rate,
            max_daily_hours=daily,
            escrow_funded_amount=funding,
            accumulated_balance=Decimal("0"),
            on_chain_balance=Decimal("0"),
            hours_accumulated=Decimal("0"),
            status=ChannelStatus.active.value,
            settle_delay_seconds=int(settle_delay_seconds or 0),
            validation_attempts=0,
        )
        db.add(ch)

        AuditService().write(
            db,
            action=AuditAction.CHANNEL_REGISTERED,
            channel_ref=channel_id,
            actor_wallet=organization_wallet,
            request_id=request_id,
            details={"worker": worker_wallet, "escrow": funding, "hourly_rate": rate},
        )

        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise StateConflictError(
                ErrorCodes.CHANNEL_ALREADY_EXISTS,
                "A channel record with this ledger id already exists.",
                {"channelId": channel_id},
            )
        db.refresh(ch)
        logger.info("[channels] registered channel=%s org=%s worker=%s", channel_id, org.id, worker.id)
        return ch

    def assign_channel_id(
        self,
        db: Session,
        *,
        local_id: uuid.UUID,
        channel_id: str,
        request_id: Optional[str] = None,
    ) -> PaymentChannel:
        """
        Bind the ledger id to a record created before confirmation.
        Once set, the id never changes; re-sending the same id is a no-op.
        """
        channel_id = require_channel_id(channel_id)
        ch = self.get_by_id(db, local_id)

        if ch.channel_id is not None:
            if ch.channel_id == channel_id:
                return ch
            raise StateConflictError(
                ErrorCodes.CHANNEL_ID_IMMUTABLE,
                "Channel id is already set and cannot change.",
                {"channelId": ch.channel_id},
            )

        other = self.find_by_channel_id(db, channel_id)
        if other is not None:
            raise StateConflictError(
                ErrorCodes.CHANNEL_ALREADY_EXISTS,
                "Another channel record already carries this ledger id.",
                {"channelId": channel_id},
            )

        ch.channel_id = channel_id
        AuditService().write(
            db,
            action=AuditAction.CHANNEL_ID_ASSIGNED,
            channel_ref=channel_id,
            actor_wallet=None,
            request_id=request_id,
            details={"local_id": str(ch.id)},
        )
        db.commit()
        db.refresh(ch)
        return ch

    # ---------------------------
    # WALLET TEMPLATES
    # ---------------------------

    def create_template(
        self,
        *,
        organization_wallet: str,
        worker_wallet: str,
        funding_amount: Decimal,
        settle_delay_seconds: int,
        cancel_after: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        require_wallet_address(organization_wallet, "organizationWalletAddress")
        require_wallet_address(worker_wallet, "workerWalletAddress")
        return build_create_template(
            account=organization_wallet,
            destination=worker_wallet,
            amount=_positive(funding_amount, "fundingAmount"),
            settle_delay_seconds=settle_delay_seconds,
            expiration=cancel_after,
        )
