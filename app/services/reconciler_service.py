from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.errors import ChannelError, ErrorCodes, StateConflictError
from app.core.timeutil import as_utc, iso
from app.core.validators import require_channel_id, require_wallet_address
from app.ledger.client import LedgerChannel, LedgerClient
from app.models.enums import ChannelStatus, EmploymentStatus, OrganizationNotificationType
from app.models.payment_channel import PaymentChannel
from app.models.worker import Worker
from app.services.audit_service import AuditAction, AuditService
from app.services.channel_service import ChannelService
from app.services.closure_service import CLAIM_TX_TYPE
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

IMPORTED_JOB_NAME = "[IMPORTED - EDIT JOB NAME]"

WORKER_NOT_FOUND = "WORKER_NOT_FOUND"
PROCESSING_ERROR = "PROCESSING_ERROR"


def _now():
    return datetime.now(timezone.utc)


def apply_ledger_state(ch: PaymentChannel, entry: LedgerChannel, now: datetime) -> None:
    """
    Copy ledger-derived fields onto a non-closed record.
    An Expiration on the ledger means a scheduled closure is running.
    """
    ch.escrow_funded_amount = entry.amount
    ch.on_chain_balance = entry.balance
    ch.settle_delay_seconds = entry.settle_delay
    if entry.expiration is not None:
        ch.status = ChannelStatus.closing.value
        ch.expiration_time = entry.expiration_time
    else:
        ch.status = ChannelStatus.active.value
    ch.last_ledger_sync = now


class ReconcilerService:
    """
    Corrects local channel records from ledger truth.

    sync_all() walks every channel the organization funds; the other entry
    points are single-channel checks an operator (or a scheduled job) runs.
    A closed local record is never reopened by any of them.
    """

    def __init__(self) -> None:
        self.channels = ChannelService()
        self.audit = AuditService()
        self.notifications = NotificationService()

    # ─────────────────────────────────────────────
    # BULK SYNC
    # ─────────────────────────────────────────────

    def sync_all(
        self,
        db: Session,
        ledger: LedgerClient,
        *,
        organization_wallet: str,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        require_wallet_address(organization_wallet, "walletAddress")
        org = self.channels.get_organization(db, organization_wallet)

        workers = db.execute(
            select(Worker).where(
                Worker.organization_id == org.id,
                Worker.employment_status == EmploymentStatus.active.value,
            )
        ).scalars().all()
        by_wallet = {w.wallet_address: w for w in workers}

        # a ledger failure here aborts the run before anything is written
        ledger_channels = ledger.account_channels(organization_wallet)

        results: Dict[str, Any] = {
            "total": len(ledger_channels),
            "imported": 0,
            "updated": 0,
            "skipped": 0,
            "errors": [],
        }
        settings = get_settings()

        for entry in ledger_channels:
            worker = by_wallet.get(entry.destination)
            if worker is None:
                results["skipped"] += 1
                results["errors"].append(
                    {
                        "channelId": entry.channel_id,
                        "reason": WORKER_NOT_FOUND,
                        "destinationAddress": entry.destination,
                    }
                )
                continue

            try:
                outcome = self._sync_entry(
                    db,
                    entry=entry,
                    organization_id=org.id,
                    worker=worker,
                    default_max_daily_hours=Decimal(str(settings.default_max_daily_hours)),
                    actor_wallet=organization_wallet,
                    request_id=request_id,
                )
                db.commit()
            except Exception as e:
                db.rollback()
                logger.exception("[reconcile/sync-all] channel=%s failed", entry.channel_id)
                results["errors"].append(
                    {"channelId": entry.channel_id, "reason": PROCESSING_ERROR, "error": str(e)}
                )
                continue

            results[outcome] += 1

        logger.info(
            "[reconcile/sync-all] org=%s total=%d imported=%d updated=%d skipped=%d errors=%d",
            org.id,
            results["total"],
            results["imported"],
            results["updated"],
            results["skipped"],
            len(results["errors"]),
        )
        return results

    def _sync_entry(
        self,
        db: Session,
        *,
        entry: LedgerChannel,
        organization_id,
        worker: Worker,
        default_max_daily_hours: Decimal,
        actor_wallet: Optional[str],
        request_id: Optional[str],
    ) -> str:
        now = _now()
        ch = self.channels.find_by_channel_id(db, entry.channel_id)

        if ch is not None:
            if ch.status == ChannelStatus.closed.value:
                return "skipped"
            previous = ch.status
            apply_ledger_state(ch, entry, now)
            self.audit.write(
                db,
                action=AuditAction.LEDGER_SYNC_UPDATED,
                channel_ref=ch.channel_id,
                actor_wallet=actor_wallet,
                request_id=request_id,
                details={"previous_status": previous, "status": ch.status, "escrow": entry.amount},
            )
            return "updated"

        # the ledger carries no job metadata; placeholders are for manual correction
        ch = PaymentChannel(
            channel_id=entry.channel_id,
            organization_id=organization_id,
            worker_id=worker.id,
            job_name=IMPORTED_JOB_NAME,
            hourly_rate=Decimal("0"),
            max_daily_hours=default_max_daily_hours,
            accumulated_balance=Decimal("0"),
            hours_accumulated=Decimal("0"),
            validation_attempts=0,
        )
        apply_ledger_state(ch, entry, now)
        db.add(ch)
        self.audit.write(
            db,
            action=AuditAction.LEDGER_SYNC_IMPORTED,
            channel_ref=entry.channel_id,
            actor_wallet=actor_wallet,
            request_id=request_id,
            details={"worker": worker.wallet_address, "escrow": entry.amount, "status": ch.status},
        )
        return "imported"

    # ─────────────────────────────────────────────
    # SINGLE CHANNEL
    # ─────────────────────────────────────────────

    def sync_channel(
        self,
        db: Session,
        ledger: LedgerClient,
        *,
        channel_id: str,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Present on the ledger: same update rule as sync_all.
        Absent: closed only when the recorded closure tx proves the payout;
        otherwise the channel is parked in closing for an operator.
        """
        channel_id = require_channel_id(channel_id)
        ch = self.channels.get_by_channel_id(db, channel_id)

        if ch.status == ChannelStatus.closed.value:
            return {"channel": ch, "outcome": "unchanged", "onLedger": None}

        entry = ledger.get_channel_entry(channel_id)
        now = _now()

        if entry is not None:
            previous = ch.status
            apply_ledger_state(ch, entry, now)
            self.audit.write(
                db,
                action=AuditAction.LEDGER_SYNC_UPDATED,
                channel_ref=channel_id,
                actor_wallet=None,
                request_id=request_id,
                details={"previous_status": previous, "status": ch.status},
            )
            db.commit()
            db.refresh(ch)
            return {"channel": ch, "outcome": "updated", "onLedger": True}

        proof = self._verified_closure(ledger, ch)
        if proof is not None:
            paid = Decimal(ch.accumulated_balance)
            ch.status = ChannelStatus.closed.value
            ch.closed_at = ch.closed_at or now
            ch.accumulated_balance = Decimal("0")
            ch.on_chain_balance = proof
            ch.last_ledger_sync = now
            self.audit.write(
                db,
                action=AuditAction.CLOSURE_CONFIRMED,
                channel_ref=channel_id,
                actor_wallet=None,
                request_id=request_id,
                details={"source": "sync_channel", "tx_hash": ch.closure_tx_hash, "paid_out": paid},
            )
            db.commit()
            db.refresh(ch)
            logger.info("[reconcile/sync] channel=%s closed from verified tx", channel_id)
            return {"channel": ch, "outcome": "closed", "onLedger": False}

        # missing with nothing to prove the payout: hold the balance
        ch.status = ChannelStatus.closing.value
        ch.last_ledger_sync = now
        self.audit.write(
            db,
            action=AuditAction.LEDGER_CHANNEL_MISSING,
            channel_ref=channel_id,
            actor_wallet=None,
            request_id=request_id,
            details={"accumulated_balance": ch.accumulated_balance, "closure_tx_hash": ch.closure_tx_hash},
        )
        db.commit()
        db.refresh(ch)

        logger.warning("[reconcile/sync] channel=%s missing on ledger without verified closure", channel_id)
        self.notifications.notify_organization(
            db,
            organization_id=ch.organization_id,
            notification_type=OrganizationNotificationType.channel_missing_on_ledger.value,
            channel_id=channel_id,
            message=(
                f"Channel for '{ch.job_name}' is no longer on the ledger and no verified "
                f"closure transaction is recorded. Balance {ch.accumulated_balance} is held for review."
            ),
            details={
                "accumulatedBalance": str(ch.accumulated_balance),
                "closureTxHash": ch.closure_tx_hash,
            },
        )
        return {"channel": ch, "outcome": "missing", "onLedger": False}

    def _verified_closure(self, ledger: LedgerClient, ch: PaymentChannel) -> Optional[Decimal]:
        """
        Looks up the recorded closure tx. Returns the cumulative balance it paid
        when it is a successful claim on this channel covering what we still
        owe, else None.
        """
        if not ch.closure_tx_hash:
            return None
        tx = ledger.get_transaction(ch.closure_tx_hash)
        if tx is None or not tx.succeeded:
            return None
        if tx.transaction_type != CLAIM_TX_TYPE or tx.channel != ch.channel_id:
            return None
        if tx.balance is None or tx.balance < Decimal(ch.accumulated_balance):
            return None
        return tx.balance

    # ─────────────────────────────────────────────
    # STALE BALANCES
    # ─────────────────────────────────────────────

    def find_stale_balances(self, db: Session) -> List[PaymentChannel]:
        return list(
            db.execute(
                select(PaymentChannel)
                .where(
                    PaymentChannel.status == ChannelStatus.closed.value,
                    PaymentChannel.accumulated_balance > 0,
                )
                .order_by(PaymentChannel.closed_at.asc())
            )
            .scalars()
            .all()
        )

    def correct_stale_balance(
        self,
        db: Session,
        ledger: LedgerClient,
        *,
        channel_id: str,
        request_id: Optional[str] = None,
    ) -> PaymentChannel:
        channel_id = require_channel_id(channel_id)
        ch = self.channels.get_by_channel_id(db, channel_id)

        stale = Decimal(ch.accumulated_balance)
        if ch.status != ChannelStatus.closed.value or stale <= 0:
            raise StateConflictError(
                ErrorCodes.NO_STALE_BALANCE,
                "Channel has no stale balance to correct.",
                {"status": ch.status, "accumulatedBalance": str(stale)},
            )

        entry = ledger.get_channel_entry(channel_id)
        paid = self._verified_closure(ledger, ch)
        if entry is not None or paid is None:
            raise StateConflictError(
                ErrorCodes.STALE_BALANCE_UNVERIFIED,
                "Ledger does not prove this channel was closed with the balance paid out.",
                {
                    "onLedger": entry is not None,
                    "closureTxHash": ch.closure_tx_hash,
                    "accumulatedBalance": str(stale),
                },
            )

        now = _now()
        ch.accumulated_balance = Decimal("0")
        ch.on_chain_balance = paid
        ch.last_ledger_sync = now
        self.audit.write(
            db,
            action=AuditAction.STALE_BALANCE_CLEARED,
            channel_ref=channel_id,
            actor_wallet=None,
            request_id=request_id,
            details={"cleared": stale, "tx_hash": ch.closure_tx_hash},
        )
        db.commit()
        db.refresh(ch)
        logger.info("[reconcile/stale] channel=%s cleared stale balance=%s", channel_id, stale)
        return ch

    # ─────────────────────────────────────────────
    # EXPIRED SCHEDULED CLOSURES
    # ─────────────────────────────────────────────

    def reconcile_expired_closures(
        self,
        db: Session,
        ledger: LedgerClient,
        *,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        closing channels past expiration_time: removed from the ledger ->
        closed with balance zeroed; still present -> reported, since only a
        signed claim can remove them.
        """
        now = _now()
        candidates = db.execute(
            select(PaymentChannel).where(
                PaymentChannel.status == ChannelStatus.closing.value,
                PaymentChannel.expiration_time.is_not(None),
            )
        ).scalars().all()

        finalized: List[str] = []
        awaiting: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []

        for ch in candidates:
            if as_utc(ch.expiration_time) > now:
                continue
            try:
                entry = ledger.get_channel_entry(ch.channel_id)
            except ChannelError as e:
                errors.append({"channelId": ch.channel_id, "reason": e.code})
                continue

            if entry is not None:
                awaiting.append({"channelId": ch.channel_id, "expirationTime": iso(ch.expiration_time)})
                continue

            paid = Decimal(ch.accumulated_balance)
            ch.status = ChannelStatus.closed.value
            ch.closed_at = now
            ch.accumulated_balance = Decimal("0")
            ch.last_ledger_sync = now
            self.audit.write(
                db,
                action=AuditAction.EXPIRED_CLOSURE_FINALIZED,
                channel_ref=ch.channel_id,
                actor_wallet=None,
                request_id=request_id,
                details={"paid_out": paid, "expiration_time": ch.expiration_time},
            )
            db.commit()
            finalized.append(ch.channel_id)

        if finalized or awaiting:
            logger.info(
                "[reconcile/expired] finalized=%d awaiting_claim=%d",
                len(finalized),
                len(awaiting),
            )
        return {
            "checked": len(candidates),
            "finalized": finalized,
            "awaitingClaim": awaiting,
            "errors": errors,
        }
