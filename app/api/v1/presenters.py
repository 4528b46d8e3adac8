"""ORM row -> response dict. Money goes out as strings so no float ever touches it."""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

from app.core.timeutil import iso
from app.models.organization_notification import OrganizationNotification
from app.models.payment_channel import PaymentChannel
from app.models.work_session import WorkSession
from app.models.worker_notification import WorkerNotification


def money(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return format(Decimal(value).normalize(), "f")


def channel_out(ch: PaymentChannel) -> Dict[str, Any]:
    return {
        "id": str(ch.id),
        "channelId": ch.channel_id,
        "organizationId": str(ch.organization_id),
        "workerId": str(ch.worker_id),
        "jobName": ch.job_name,
        "hourlyRate": money(ch.hourly_rate),
        "maxDailyHours": money(ch.max_daily_hours),
        "escrowFundedAmount": money(ch.escrow_funded_amount),
        "accumulatedBalance": money(ch.accumulated_balance),
        "onChainBalance": money(ch.on_chain_balance),
        "hoursAccumulated": money(ch.hours_accumulated),
        "availableEscrow": money(ch.available_escrow),
        "status": ch.status,
        "settleDelaySeconds": ch.settle_delay_seconds,
        "expirationTime": iso(ch.expiration_time),
        "closureTxHash": ch.closure_tx_hash,
        "closedAt": iso(ch.closed_at),
        "lastLedgerSync": iso(ch.last_ledger_sync),
        "validationAttempts": ch.validation_attempts,
        "lastValidationAt": iso(ch.last_validation_at),
    }


def session_out(ws: WorkSession) -> Dict[str, Any]:
    return {
        "id": str(ws.id),
        "workerId": str(ws.worker_id),
        "channelRecordId": str(ws.channel_id),
        "clockIn": iso(ws.clock_in),
        "clockOut": iso(ws.clock_out),
        "hourlyRate": money(ws.hourly_rate),
        "hoursWorked": money(ws.hours_worked),
        "totalAmount": money(ws.total_amount),
        "sessionStatus": ws.session_status,
        "notes": ws.notes,
    }


def worker_notification_out(n: WorkerNotification) -> Dict[str, Any]:
    return {
        "id": str(n.id),
        "workerWalletAddress": n.worker_wallet_address,
        "organizationWalletAddress": n.organization_wallet_address,
        "type": n.type,
        "channelId": n.channel_id,
        "jobName": n.job_name,
        "message": n.message,
        "isRead": n.is_read,
        "readAt": iso(n.read_at),
        "closureApproved": n.closure_approved,
        "closureApprovedAt": iso(n.closure_approved_at),
        "closureTxHash": n.closure_tx_hash,
        "createdAt": iso(n.created_at),
    }


def organization_notification_out(n: OrganizationNotification) -> Dict[str, Any]:
    return {
        "id": str(n.id),
        "organizationId": str(n.organization_id),
        "notificationType": n.notification_type,
        "channelId": n.channel_id,
        "message": n.message,
        "details": n.details_json or {},
        "isRead": n.is_read,
        "createdAt": iso(n.created_at),
    }
