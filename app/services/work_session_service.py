from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import (
    AuthorizationError,
    ErrorCodes,
    NotFoundError,
    StateConflictError,
)
from app.core.timeutil import as_utc
from app.core.validators import require_wallet_address
from app.models.enums import ChannelStatus, SessionStatus
from app.models.payment_channel import PaymentChannel
from app.models.work_session import WorkSession
from app.models.worker import Worker
from app.services.audit_service import AuditAction, AuditService
from app.services.channel_service import ChannelService

logger = logging.getLogger(__name__)

Q6 = Decimal("0.000001")
SECONDS_PER_HOUR = Decimal(3600)


def _now():
    return datetime.now(timezone.utc)


def _q(value: Decimal) -> Decimal:
    # never round in the worker's favour
    return Decimal(value).quantize(Q6, rounding=ROUND_DOWN)


def _today_start(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def compute_accrual(
    *,
    clock_in: datetime,
    clock_out: datetime,
    hourly_rate: Decimal,
) -> Tuple[Decimal, Decimal]:
    """
    hours = whole elapsed seconds / 3600, amount = hours * rate.
    Sub-second time is dropped, never rounded up.
    """
    seconds = int((as_utc(clock_out) - as_utc(clock_in)).total_seconds())
    seconds = max(seconds, 0)
    hours = _q(Decimal(seconds) / SECONDS_PER_HOUR)
    return hours, _q(hours * Decimal(hourly_rate))


def cap_to_escrow(
    channel: PaymentChannel,
    hours: Decimal,
    amount: Decimal,
    hourly_rate: Decimal,
) -> Tuple[Decimal, Decimal, bool]:
    """Clamp an accrual so accumulated_balance never passes escrow_funded_amount."""
    remaining = Decimal(channel.escrow_funded_amount) - Decimal(channel.accumulated_balance)
    if amount <= remaining:
        return hours, amount, False
    amount = _q(max(remaining, Decimal("0")))
    rate = Decimal(hourly_rate)
    hours = _q(amount / rate) if rate > 0 else hours
    return hours, amount, True


def _apply_accrual(channel: PaymentChannel, hours: Decimal, amount: Decimal) -> None:
    channel.accumulated_balance = Decimal(channel.accumulated_balance) + amount
    channel.hours_accumulated = Decimal(channel.hours_accumulated) + hours


@dataclass
class ClockOutResult:
    session: WorkSession
    channel: PaymentChannel
    capped: bool = False
    # false when the channel had left active; nothing was added to its balance
    accrued: bool = True


class WorkSessionService:
    """
    Session ledger: turns clock-in/clock-out intervals into owed balance.

    Clock-out is the only place balance grows, and it moves the session and
    the channel in one transaction.
    """

    def __init__(self) -> None:
        self.channels = ChannelService()
        self.audit = AuditService()

    # ---------------------------
    # READS
    # ---------------------------

    def get_session(self, db: Session, session_id: uuid.UUID) -> WorkSession:
        ws = db.get(WorkSession, session_id)
        if not ws:
            raise NotFoundError(
                ErrorCodes.SESSION_NOT_FOUND,
                "Work session not found.",
                {"sessionId": str(session_id)},
            )
        return ws

    def hours_worked_today(self, db: Session, *, channel: PaymentChannel, now: datetime) -> Decimal:
        total = db.execute(
            select(func.coalesce(func.sum(WorkSession.hours_worked), 0)).where(
                WorkSession.channel_id == channel.id,
                WorkSession.clock_in >= _today_start(now),
                WorkSession.session_status != SessionStatus.active.value,
            )
        ).scalar_one()
        return Decimal(str(total))

    def list_active_sessions(self, db: Session, *, worker_wallet: str) -> List[Dict[str, Any]]:
        rows = db.execute(
            select(WorkSession, PaymentChannel)
            .join(PaymentChannel, WorkSession.channel_id == PaymentChannel.id)
            .join(Worker, WorkSession.worker_id == Worker.id)
            .where(
                Worker.wallet_address == worker_wallet,
                WorkSession.session_status == SessionStatus.active.value,
            )
            .order_by(WorkSession.clock_in.asc())
        ).all()
        now = _now()
        return [self._live_view(ws, ch, now) for ws, ch in rows]

    def list_organization_active_sessions(
        self,
        db: Session,
        *,
        organization_wallet: str,
    ) -> List[Dict[str, Any]]:
        org = self.channels.get_organization(db, organization_wallet)
        rows = db.execute(
            select(WorkSession, PaymentChannel, Worker)
            .join(PaymentChannel, WorkSession.channel_id == PaymentChannel.id)
            .join(Worker, WorkSession.worker_id == Worker.id)
            .where(
                PaymentChannel.organization_id == org.id,
                WorkSession.session_status == SessionStatus.active.value,
            )
            .order_by(WorkSession.clock_in.asc())
        ).all()
        now = _now()
        out = []
        for ws, ch, worker in rows:
            view = self._live_view(ws, ch, now)
            view["workerName"] = worker.full_name
            view["workerWalletAddress"] = worker.wallet_address
            out.append(view)
        return out

    def _live_view(self, ws: WorkSession, ch: PaymentChannel, now: datetime) -> Dict[str, Any]:
        hours, amount = compute_accrual(clock_in=ws.clock_in, clock_out=now, hourly_rate=ws.hourly_rate)
        return {
            "session": ws,
            "channelId": ch.channel_id,
            "jobName": ch.job_name,
            "elapsedSeconds": int((now - as_utc(ws.clock_in)).total_seconds()),
            "currentHours": hours,
            "currentEarnings": amount,
        }

    # ---------------------------
    # MUTATIONS
    # ---------------------------

    def clock_in(
        self,
        db: Session,
        *,
        worker_wallet: str,
        channel_ref: str,
        notes: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> WorkSession:
        """
        Rules:
        - channel must be active
        - caller must be the channel's worker
        - one active session per (worker, channel)
        - today's hours below max_daily_hours
        - at least one hour of escrow left (escrow - accumulated >= rate)
        """
        require_wallet_address(worker_wallet, "workerWalletAddress")
        ch = self.channels.resolve(db, channel_ref)

        if ch.status != ChannelStatus.active.value:
            raise StateConflictError(
                ErrorCodes.CHANNEL_INACTIVE,
                "Payment channel is not active.",
                {"status": ch.status},
            )
        if ch.worker.wallet_address != worker_wallet:
            raise AuthorizationError("Wallet is not the worker on this channel.")

        existing = db.execute(
            select(WorkSession.id).where(
                WorkSession.worker_id == ch.worker_id,
                WorkSession.channel_id == ch.id,
                WorkSession.session_status == SessionStatus.active.value,
            )
        ).first()
        if existing:
            raise StateConflictError(
                ErrorCodes.ALREADY_CLOCKED_IN,
                "Worker already has an active session on this channel.",
                {"sessionId": str(existing[0])},
            )

        now = _now()
        today = self.hours_worked_today(db, channel=ch, now=now)
        if today >= Decimal(ch.max_daily_hours):
            raise StateConflictError(
                ErrorCodes.DAILY_LIMIT_EXCEEDED,
                "Daily hour limit reached for this channel.",
                {"hoursToday": str(today), "maxDailyHours": str(ch.max_daily_hours)},
            )

        available = ch.available_escrow
        if available < Decimal(ch.hourly_rate):
            raise StateConflictError(
                ErrorCodes.INSUFFICIENT_ESCROW,
                "Remaining escrow does not cover one more hour of work.",
                {"availableEscrow": str(available), "hourlyRate": str(ch.hourly_rate)},
            )

        ws = WorkSession(
            worker_id=ch.worker_id,
            channel_id=ch.id,
            clock_in=now,
            hourly_rate=ch.hourly_rate,
            session_status=SessionStatus.active.value,
            notes=notes,
        )
        db.add(ws)
        self.audit.write(
            db,
            action=AuditAction.CLOCK_IN,
            channel_ref=ch.channel_id,
            actor_wallet=worker_wallet,
            request_id=request_id,
            details={"hourly_rate": ch.hourly_rate},
        )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise StateConflictError(
                ErrorCodes.ALREADY_CLOCKED_IN,
                "Worker already has an active session on this channel.",
            )
        db.refresh(ws)
        logger.info("[sessions] clock-in session=%s channel=%s", ws.id, ch.channel_id)
        return ws

    def clock_out(
        self,
        db: Session,
        *,
        worker_wallet: str,
        session_id: uuid.UUID,
        notes: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> ClockOutResult:
        require_wallet_address(worker_wallet, "workerWalletAddress")
        ws = self.get_session(db, session_id)

        worker = db.get(Worker, ws.worker_id)
        if not worker or worker.wallet_address != worker_wallet:
            raise AuthorizationError("Session belongs to a different worker.")
        if ws.session_status != SessionStatus.active.value:
            raise StateConflictError(
                ErrorCodes.SESSION_NOT_ACTIVE,
                "Work session is not active.",
                {"sessionStatus": ws.session_status},
            )

        now = _now()
        try:
            ch = self.channels.get_for_update(db, ws.channel_id)
            capped, accrued = self._close_session(
                db,
                ws=ws,
                ch=ch,
                clock_out=now,
                status=SessionStatus.completed,
                hours_and_amount=compute_accrual(
                    clock_in=ws.clock_in, clock_out=now, hourly_rate=ws.hourly_rate
                ),
                action=AuditAction.CLOCK_OUT,
                actor_wallet=worker_wallet,
                request_id=request_id,
                notes=notes,
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("[sessions] clock-out rolled back session=%s", session_id)
            raise

        db.refresh(ws)
        db.refresh(ch)
        logger.info(
            "[sessions] clock-out session=%s hours=%s amount=%s capped=%s accrued=%s",
            ws.id,
            ws.hours_worked,
            ws.total_amount,
            capped,
            accrued,
        )
        return ClockOutResult(session=ws, channel=ch, capped=capped, accrued=accrued)

    def timeout_stale_sessions(self, db: Session) -> Dict[str, Any]:
        """
        Operator sweep for sessions nobody clocked out of.
        Each one is paid for max_daily_hours and marked timeout, one
        transaction per session.
        """
        now = _now()
        rows = db.execute(
            select(WorkSession, PaymentChannel)
            .join(PaymentChannel, WorkSession.channel_id == PaymentChannel.id)
            .where(WorkSession.session_status == SessionStatus.active.value)
        ).all()

        timed_out: List[str] = []
        unaccrued: List[str] = []
        for ws, ch in rows:
            limit = timedelta(hours=float(ch.max_daily_hours))
            started = as_utc(ws.clock_in)
            if now - started <= limit:
                continue
            hours = _q(Decimal(ch.max_daily_hours))
            try:
                locked = self.channels.get_for_update(db, ch.id)
                _, accrued = self._close_session(
                    db,
                    ws=ws,
                    ch=locked,
                    clock_out=started + limit,
                    status=SessionStatus.timeout,
                    hours_and_amount=(hours, _q(hours * Decimal(ws.hourly_rate))),
                    action=AuditAction.SESSION_TIMEOUT,
                    actor_wallet=None,
                    request_id=None,
                )
                db.commit()
            except Exception:
                db.rollback()
                logger.exception("[sessions] timeout failed session=%s", ws.id)
                raise
            timed_out.append(str(ws.id))
            if not accrued:
                unaccrued.append(str(ws.id))

        if timed_out:
            logger.warning("[sessions] timed out %d stale session(s)", len(timed_out))
        return {
            "checked": len(rows),
            "timedOut": len(timed_out),
            "sessionIds": timed_out,
            "unaccruedSessionIds": unaccrued,
        }

    def _close_session(
        self,
        db: Session,
        *,
        ws: WorkSession,
        ch: PaymentChannel,
        clock_out: datetime,
        status: SessionStatus,
        hours_and_amount: Tuple[Decimal, Decimal],
        action: str,
        actor_wallet: Optional[str],
        request_id: Optional[str],
        notes: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """
        Ends the session and credits the channel. A channel that is closing or
        closed already has its payout fixed, so the time is recorded but
        nothing is added to its balance.
        """
        hours, amount = hours_and_amount
        accrued = ch.status == ChannelStatus.active.value
        capped = False
        if not accrued:
            amount = Decimal("0")
            logger.warning(
                "[sessions] channel %s is %s; session=%s closed without accrual",
                ch.channel_id,
                ch.status,
                ws.id,
            )
        else:
            hours, amount, capped = cap_to_escrow(ch, hours, amount, ws.hourly_rate)
        if capped:
            logger.warning(
                "[sessions] accrual capped at escrow session=%s channel=%s amount=%s",
                ws.id,
                ch.channel_id,
                amount,
            )

        ws.clock_out = clock_out
        ws.hours_worked = hours
        ws.total_amount = amount
        ws.session_status = status.value
        if notes:
            ws.notes = notes

        if accrued:
            _apply_accrual(ch, hours, amount)

        self.audit.write(
            db,
            action=action,
            channel_ref=ch.channel_id,
            actor_wallet=actor_wallet,
            request_id=request_id,
            details={
                "session_id": str(ws.id),
                "hours": hours,
                "amount": amount,
                "capped": capped,
                "accrued": accrued,
                "channel_status": ch.status,
            },
        )
        return capped, accrued
