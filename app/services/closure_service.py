from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.core.errors import (
    AuthorizationError,
    ErrorCodes,
    LedgerVerificationError,
    StateConflictError,
)
from app.core.timeutil import iso
from app.core.validators import require_channel_id, require_tx_hash, require_wallet_address
from app.ledger.client import LedgerChannel, LedgerClient, LedgerTransaction
from app.ledger.templates import build_close_template
from app.models.enums import (
    ChannelRole,
    ChannelStatus,
    OrganizationNotificationType,
    SessionStatus,
    WorkerNotificationType,
)
from app.models.payment_channel import PaymentChannel
from app.models.work_session import WorkSession
from app.models.worker_notification import WorkerNotification
from app.services.audit_service import AuditAction, AuditService
from app.services.channel_service import ChannelService
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

CLAIM_TX_TYPE = "PaymentChannelClaim"


def _now():
    return datetime.now(timezone.utc)


def resolve_role(ch: PaymentChannel, caller_wallet: str) -> ChannelRole:
    """
    Role comes from wallet equality against the channel's parties, never from
    anything the caller claims.
    """
    if caller_wallet == ch.organization.wallet_address:
        return ChannelRole.source
    if caller_wallet == ch.worker.wallet_address:
        return ChannelRole.destination
    raise AuthorizationError(
        "Wallet is neither the organization nor the worker on this channel.",
        {"channelId": ch.channel_id},
    )


def escrow_return(ch: PaymentChannel) -> Decimal:
    # clamped: a worker owed more than escrow must never yield a negative instruction
    return max(Decimal("0"), Decimal(ch.escrow_funded_amount) - Decimal(ch.accumulated_balance))


def _unclaimed_message(role: ChannelRole, balance: Decimal) -> str:
    if role == ChannelRole.source:
        return (
            f"Worker has {balance} unpaid on this channel. Closing now pays it out "
            f"and returns the rest of the escrow. Re-submit with forceClose to proceed."
        )
    return (
        f"You have {balance} accrued on this channel. Closing now claims it and ends "
        f"the channel. Re-submit with forceClose to proceed."
    )


class ClosureService:
    """
    Two-phase channel closure.

    Phase A (propose) takes the channel from active to closing with an atomic
    conditional update and hands back an unsigned claim template.
    Phase B (confirm) re-derives the outcome from the ledger; the tx hash the
    client sends is only a lookup key. A mismatch restores the channel to
    active and leaves the balance alone.
    """

    def __init__(self) -> None:
        self.channels = ChannelService()
        self.audit = AuditService()
        self.notifications = NotificationService()

    # ─────────────────────────────────────────────
    # PHASE A: PROPOSE
    # ─────────────────────────────────────────────

    def propose_closure(
        self,
        db: Session,
        *,
        channel_id: str,
        caller_wallet: str,
        force_close: bool = False,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        require_wallet_address(caller_wallet, "walletAddress")
        channel_id = require_channel_id(channel_id)

        ch = self.channels.get_by_channel_id(db, channel_id)
        role = resolve_role(ch, caller_wallet)
        self._reject_unless_active(ch)

        open_sessions = self._active_session_count(db, ch)
        if open_sessions:
            # unpaid time would land after the claim template is fixed
            raise StateConflictError(
                ErrorCodes.SESSION_IN_PROGRESS,
                "Worker is still clocked in on this channel. Clock out before closing.",
                {"activeSessions": open_sessions, "callerRole": role.value},
            )

        balance = Decimal(ch.accumulated_balance)
        if balance > 0 and not force_close:
            raise StateConflictError(
                ErrorCodes.UNCLAIMED_BALANCE,
                _unclaimed_message(role, balance),
                {
                    "accumulatedBalance": str(balance),
                    "callerRole": role.value,
                    "requiresForceClose": True,
                },
            )

        returned = escrow_return(ch)
        now = _now()

        result = db.execute(
            update(PaymentChannel)
            .where(
                PaymentChannel.id == ch.id,
                PaymentChannel.status == ChannelStatus.active.value,
            )
            .values(
                status=ChannelStatus.closing.value,
                validation_attempts=PaymentChannel.validation_attempts + 1,
                last_validation_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # another propose won the race
            db.rollback()
            db.refresh(ch)
            logger.info("[closure/propose] lost status race channel=%s status=%s", channel_id, ch.status)
            self._reject_unless_active(ch)
            raise StateConflictError(
                ErrorCodes.CLOSURE_IN_PROGRESS,
                "Channel status changed during the request; retry.",
                {"status": ch.status},
            )

        self.audit.write(
            db,
            action=AuditAction.CLOSURE_PROPOSED,
            channel_ref=channel_id,
            actor_wallet=caller_wallet,
            request_id=request_id,
            details={
                "role": role.value,
                "accumulated_balance": balance,
                "escrow_return": returned,
                "force_close": force_close,
            },
        )
        db.commit()
        db.refresh(ch)

        # claim Balance is cumulative: what the ledger already paid plus what we owe
        payout_total = Decimal(ch.on_chain_balance) + balance
        logger.info(
            "[closure/propose] channel=%s role=%s balance=%s escrow_return=%s",
            channel_id,
            role.value,
            balance,
            returned,
        )
        return {
            "channel": ch,
            "callerRole": role.value,
            "balanceToWorker": balance,
            "escrowReturn": returned,
            "transaction": build_close_template(
                account=caller_wallet,
                channel_id=channel_id,
                balance=payout_total,
            ),
        }

    def _active_session_count(self, db: Session, ch: PaymentChannel) -> int:
        return int(
            db.execute(
                select(func.count(WorkSession.id)).where(
                    WorkSession.channel_id == ch.id,
                    WorkSession.session_status == SessionStatus.active.value,
                )
            ).scalar_one()
        )

    def _reject_unless_active(self, ch: PaymentChannel) -> None:
        if ch.status == ChannelStatus.closed.value:
            raise StateConflictError(
                ErrorCodes.ALREADY_CLOSED,
                "Payment channel is already closed.",
                {"closedAt": iso(ch.closed_at), "closureTxHash": ch.closure_tx_hash},
            )
        if ch.status == ChannelStatus.closing.value:
            raise StateConflictError(
                ErrorCodes.CLOSURE_IN_PROGRESS,
                "A closure is already in progress for this channel.",
                {
                    "lastValidationAt": iso(ch.last_validation_at),
                    "validationAttempts": ch.validation_attempts,
                    "expirationTime": iso(ch.expiration_time),
                },
            )

    # ─────────────────────────────────────────────
    # PHASE B: CONFIRM
    # ─────────────────────────────────────────────

    def confirm_closure(
        self,
        db: Session,
        ledger: LedgerClient,
        *,
        channel_id: str,
        caller_wallet: str,
        tx_hash: str,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        require_wallet_address(caller_wallet, "walletAddress")
        channel_id = require_channel_id(channel_id)
        tx_hash = require_tx_hash(tx_hash)

        ch = self.channels.get_by_channel_id(db, channel_id)
        role = resolve_role(ch, caller_wallet)

        if ch.status == ChannelStatus.closed.value:
            if ch.closure_tx_hash == tx_hash:
                return {"channel": ch, "callerRole": role.value, "outcome": "closed", "alreadyConfirmed": True}
            raise StateConflictError(
                ErrorCodes.ALREADY_CLOSED,
                "Payment channel is already closed.",
                {"closedAt": iso(ch.closed_at), "closureTxHash": ch.closure_tx_hash},
            )

        # ledger errors propagate before anything is written
        tx = ledger.get_transaction(tx_hash)
        entry = ledger.get_channel_entry(channel_id)

        reason = self._verification_failure(role, channel_id, tx, entry)
        if reason:
            self._roll_back(
                db,
                ch=ch,
                role=role,
                caller_wallet=caller_wallet,
                tx_hash=tx_hash,
                tx=tx,
                entry=entry,
                reason=reason,
                request_id=request_id,
            )

        ch = self.channels.get_for_update(db, ch.id)
        now = _now()

        if role == ChannelRole.source and entry is not None:
            return self._record_scheduled(
                db,
                ch=ch,
                entry=entry,
                tx_hash=tx_hash,
                caller_wallet=caller_wallet,
                request_id=request_id,
                now=now,
            )

        return self._record_closed(
            db,
            ch=ch,
            role=role,
            tx=tx,
            tx_hash=tx_hash,
            caller_wallet=caller_wallet,
            request_id=request_id,
            now=now,
        )

    def _verification_failure(
        self,
        role: ChannelRole,
        channel_id: str,
        tx: Optional[LedgerTransaction],
        entry: Optional[LedgerChannel],
    ) -> Optional[str]:
        """Returns a human-readable reason, or None when the ledger agrees."""
        problems: List[str] = []
        if tx is None:
            problems.append("Transaction not found on the ledger.")
        elif not tx.validated:
            problems.append("Transaction is not validated yet.")
        elif not tx.succeeded:
            problems.append(f"Transaction failed with result {tx.result_code}.")
        elif tx.transaction_type != CLAIM_TX_TYPE or tx.channel != channel_id:
            problems.append("Transaction is not a channel claim on this channel.")
        elif not tx.has_close_flag:
            problems.append("Transaction does not carry the close flag.")

        # topology is checked regardless of the tx outcome
        if role == ChannelRole.destination and entry is not None:
            problems.append("Channel still exists on the ledger after a worker closure.")
        if role == ChannelRole.source and entry is not None and entry.expiration is None:
            problems.append("Channel is still open on the ledger with no scheduled expiration.")

        return " ".join(problems) if problems else None

    def _roll_back(
        self,
        db: Session,
        *,
        ch: PaymentChannel,
        role: ChannelRole,
        caller_wallet: str,
        tx_hash: str,
        tx: Optional[LedgerTransaction],
        entry: Optional[LedgerChannel],
        reason: str,
        request_id: Optional[str],
    ) -> None:
        validated = bool(tx and tx.validated)
        removed = entry is None
        previous = ch.status
        previous_expiration = ch.expiration_time

        db.execute(
            update(PaymentChannel)
            .where(PaymentChannel.id == ch.id)
            .values(status=ChannelStatus.active.value, expiration_time=None)
            .execution_options(synchronize_session=False)
        )
        self.audit.write(
            db,
            action=AuditAction.CLOSURE_ROLLED_BACK,
            channel_ref=ch.channel_id,
            actor_wallet=caller_wallet,
            request_id=request_id,
            details={
                "role": role.value,
                "tx_hash": tx_hash,
                "previous_status": previous,
                "previous_expiration_time": previous_expiration,
                "reason": reason,
            },
        )
        db.commit()
        db.refresh(ch)

        logger.warning(
            "[closure/confirm] verification failed channel=%s tx=%s reason=%s",
            ch.channel_id,
            tx_hash,
            reason,
        )

        details = {
            "txHash": tx_hash,
            "validated": validated,
            "resultCode": tx.result_code if tx else None,
            "channelRemoved": removed,
            "callerRole": role.value,
            "reason": reason,
        }
        self.notifications.notify_organization(
            db,
            organization_id=ch.organization_id,
            notification_type=OrganizationNotificationType.channel_closure_failed.value,
            channel_id=ch.channel_id,
            message=f"Closure of '{ch.job_name}' could not be verified on the ledger: {reason}",
            details=details,
        )

        raise LedgerVerificationError(
            "Closure could not be confirmed on the ledger. The channel was restored to active and a retry is safe.",
            {**details, "status": ChannelStatus.active.value},
        )

    def _record_scheduled(
        self,
        db: Session,
        *,
        ch: PaymentChannel,
        entry: LedgerChannel,
        tx_hash: str,
        caller_wallet: str,
        request_id: Optional[str],
        now: datetime,
    ) -> Dict[str, Any]:
        # settle delay running; nothing has been paid yet
        ch.status = ChannelStatus.closing.value
        ch.expiration_time = entry.expiration_time
        ch.settle_delay_seconds = entry.settle_delay
        ch.on_chain_balance = entry.balance
        ch.closure_tx_hash = tx_hash
        ch.last_ledger_sync = now

        self.audit.write(
            db,
            action=AuditAction.CLOSURE_SCHEDULED,
            channel_ref=ch.channel_id,
            actor_wallet=caller_wallet,
            request_id=request_id,
            details={"tx_hash": tx_hash, "expiration_time": ch.expiration_time},
        )
        db.commit()
        db.refresh(ch)
        logger.info(
            "[closure/confirm] scheduled channel=%s expires=%s",
            ch.channel_id,
            iso(ch.expiration_time),
        )
        return {"channel": ch, "callerRole": ChannelRole.source.value, "outcome": "scheduled"}

    def _record_closed(
        self,
        db: Session,
        *,
        ch: PaymentChannel,
        role: ChannelRole,
        tx: Optional[LedgerTransaction],
        tx_hash: str,
        caller_wallet: str,
        request_id: Optional[str],
        now: datetime,
    ) -> Dict[str, Any]:
        paid = Decimal(ch.accumulated_balance)

        ch.status = ChannelStatus.closed.value
        ch.closed_at = now
        ch.accumulated_balance = Decimal("0")
        if tx is not None and tx.balance is not None:
            ch.on_chain_balance = tx.balance
        ch.closure_tx_hash = tx_hash
        ch.last_ledger_sync = now

        if role == ChannelRole.destination:
            self._stamp_closure_request(db, channel_id=ch.channel_id, tx_hash=tx_hash)

        self.audit.write(
            db,
            action=AuditAction.CLOSURE_CONFIRMED,
            channel_ref=ch.channel_id,
            actor_wallet=caller_wallet,
            request_id=request_id,
            details={"role": role.value, "tx_hash": tx_hash, "paid_out": paid},
        )
        db.commit()
        db.refresh(ch)
        logger.info("[closure/confirm] closed channel=%s role=%s paid=%s", ch.channel_id, role.value, paid)
        return {"channel": ch, "callerRole": role.value, "outcome": "closed", "paidOut": paid}

    def _stamp_closure_request(self, db: Session, *, channel_id: str, tx_hash: str) -> None:
        req = db.execute(
            select(WorkerNotification)
            .where(
                WorkerNotification.channel_id == channel_id,
                WorkerNotification.type == WorkerNotificationType.closure_request.value,
                WorkerNotification.closure_approved.is_(True),
                WorkerNotification.closure_tx_hash.is_(None),
            )
            .order_by(WorkerNotification.closure_approved_at.desc())
        ).scalars().first()
        if req:
            req.closure_tx_hash = tx_hash
