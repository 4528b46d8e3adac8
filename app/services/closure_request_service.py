from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import (
    AuthorizationError,
    ErrorCodes,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from app.core.timeutil import iso
from app.core.validators import require_channel_id, require_wallet_address
from app.models.enums import ChannelStatus, WorkerNotificationType
from app.models.worker_notification import WorkerNotification
from app.services.audit_service import AuditAction, AuditService
from app.services.channel_service import ChannelService
from app.services.closure_service import escrow_return

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def default_request_message(job_name: str, balance: Decimal) -> str:
    return (
        f"Your employer has requested closure of the payment channel for '{job_name}'. "
        f"Accrued balance to be paid out: {balance}. "
        f"Approve to close the channel from your wallet."
    )


class ClosureRequestService:
    """
    Closure-request handshake.

    The organization asks, the worker approves, and the worker's own wallet
    then runs the normal propose/confirm closure as the destination. Nothing
    here touches channel state.
    """

    def __init__(self) -> None:
        self.channels = ChannelService()
        self.audit = AuditService()

    def request_worker_closure(
        self,
        db: Session,
        *,
        organization_wallet: str,
        channel_id: str,
        message: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> WorkerNotification:
        require_wallet_address(organization_wallet, "organizationWalletAddress")
        channel_id = require_channel_id(channel_id)

        ch = self.channels.get_by_channel_id(db, channel_id)
        if ch.organization.wallet_address != organization_wallet:
            raise AuthorizationError("Only the channel's organization can request closure.")

        if ch.status != ChannelStatus.active.value:
            code = (
                ErrorCodes.ALREADY_CLOSED
                if ch.status == ChannelStatus.closed.value
                else ErrorCodes.CLOSURE_IN_PROGRESS
            )
            raise StateConflictError(code, f"Channel is {ch.status}.", {"status": ch.status})

        pending = self._pending_request(db, channel_id)
        if pending:
            raise StateConflictError(
                ErrorCodes.REQUEST_ALREADY_PENDING,
                "A closure request is already pending for this channel.",
                {"requestId": str(pending.id), "createdAt": iso(pending.created_at)},
            )

        balance = Decimal(ch.accumulated_balance)
        row = WorkerNotification(
            worker_wallet_address=ch.worker.wallet_address,
            organization_wallet_address=organization_wallet,
            type=WorkerNotificationType.closure_request.value,
            channel_id=channel_id,
            job_name=ch.job_name,
            message=(message or "").strip() or default_request_message(ch.job_name, balance),
        )
        db.add(row)
        self.audit.write(
            db,
            action=AuditAction.CLOSURE_REQUESTED,
            channel_ref=channel_id,
            actor_wallet=organization_wallet,
            request_id=request_id,
            details={"worker": ch.worker.wallet_address, "accumulated_balance": balance},
        )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise StateConflictError(
                ErrorCodes.REQUEST_ALREADY_PENDING,
                "A closure request is already pending for this channel.",
            )
        db.refresh(row)
        logger.info("[closure-requests] created request=%s channel=%s", row.id, channel_id)
        return row

    def approve_closure(
        self,
        db: Session,
        *,
        worker_wallet: str,
        notification_id: uuid.UUID,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Returns payoff figures for the worker's client to build the claim.
        The channel itself stays active until the closure is confirmed.
        """
        require_wallet_address(worker_wallet, "walletAddress")

        row = db.get(WorkerNotification, notification_id)
        if not row:
            raise NotFoundError(
                ErrorCodes.REQUEST_NOT_FOUND,
                "Closure request not found.",
                {"requestId": str(notification_id)},
            )
        if row.worker_wallet_address != worker_wallet:
            raise AuthorizationError("Closure request belongs to a different worker.")
        if row.type != WorkerNotificationType.closure_request.value:
            raise ValidationError(
                ErrorCodes.INVALID_NOTIFICATION_TYPE,
                "Notification is not a closure request.",
                {"type": row.type},
            )
        if row.closure_approved:
            raise StateConflictError(
                ErrorCodes.REQUEST_ALREADY_APPROVED,
                "Closure request already approved.",
                {"closureApprovedAt": iso(row.closure_approved_at)},
            )

        ch = self.channels.get_by_channel_id(db, row.channel_id)
        if ch.status != ChannelStatus.active.value:
            raise StateConflictError(
                ErrorCodes.CHANNEL_INACTIVE,
                f"Channel status is {ch.status}, must be active.",
                {"status": ch.status},
            )

        now = _now()
        row.closure_approved = True
        row.closure_approved_at = now
        row.is_read = True
        row.read_at = now
        self.audit.write(
            db,
            action=AuditAction.CLOSURE_REQUEST_APPROVED,
            channel_ref=ch.channel_id,
            actor_wallet=worker_wallet,
            request_id=request_id,
            details={"request_id": str(row.id)},
        )
        db.commit()
        db.refresh(row)

        logger.info("[closure-requests] approved request=%s channel=%s", row.id, ch.channel_id)
        return {
            "request": row,
            "channelId": ch.channel_id,
            "balance": Decimal(ch.accumulated_balance),
            "escrowReturn": escrow_return(ch),
            "jobName": ch.job_name,
            "organizationName": ch.organization.name,
        }

    def _pending_request(self, db: Session, channel_id: str) -> Optional[WorkerNotification]:
        return db.execute(
            select(WorkerNotification).where(
                WorkerNotification.channel_id == channel_id,
                WorkerNotification.type == WorkerNotificationType.closure_request.value,
                WorkerNotification.closure_approved.is_(False),
            )
        ).scalars().first()
