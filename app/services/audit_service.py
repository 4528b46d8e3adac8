from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.models.audit_log import ChannelAuditLog


class AuditAction:
    # Channel record
    CHANNEL_REGISTERED = "CHANNEL_REGISTERED"
    CHANNEL_ID_ASSIGNED = "CHANNEL_ID_ASSIGNED"

    # Session ledger
    CLOCK_IN = "CLOCK_IN"
    CLOCK_OUT = "CLOCK_OUT"
    SESSION_TIMEOUT = "SESSION_TIMEOUT"

    # Closure protocol
    CLOSURE_PROPOSED = "CLOSURE_PROPOSED"
    CLOSURE_SCHEDULED = "CLOSURE_SCHEDULED"
    CLOSURE_CONFIRMED = "CLOSURE_CONFIRMED"
    CLOSURE_ROLLED_BACK = "CLOSURE_ROLLED_BACK"

    # Handshake
    CLOSURE_REQUESTED = "CLOSURE_REQUESTED"
    CLOSURE_REQUEST_APPROVED = "CLOSURE_REQUEST_APPROVED"

    # Reconciler
    LEDGER_SYNC_UPDATED = "LEDGER_SYNC_UPDATED"
    LEDGER_SYNC_IMPORTED = "LEDGER_SYNC_IMPORTED"
    LEDGER_CHANNEL_MISSING = "LEDGER_CHANNEL_MISSING"
    STALE_BALANCE_CLEARED = "STALE_BALANCE_CLEARED"
    EXPIRED_CLOSURE_FINALIZED = "EXPIRED_CLOSURE_FINALIZED"


def _json_safe(details: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in details.items():
        if isinstance(v, Decimal):
            out[k] = str(v)
        elif isinstance(v, dict):
            out[k] = _json_safe(v)
        elif hasattr(v, "isoformat"):
            out[k] = v.isoformat()
        else:
            out[k] = v
    return out


class AuditService:
    def write(
        self,
        db: Session,
        *,
        action: str,
        channel_ref: Optional[str],
        actor_wallet: Optional[str],
        details: Dict[str, Any],
        request_id: Optional[str] = None,
    ) -> None:
        """
        Adds the audit row to the caller's transaction; the caller commits.
        An audit row must never outlive a rolled-back change.
        """
        row = ChannelAuditLog(
            action=action,
            channel_ref=channel_ref,
            actor_wallet=actor_wallet,
            request_id=request_id,
            details_json=_json_safe(details),
        )
        db.add(row)
