"""
Coded error taxonomy for the reconciliation engine.

Services raise these; the API layer turns every one of them into the same body:

    {"success": false, "error": {"code", "category", "message", "context"}}

Category decides the HTTP status and tells the caller whether the request was
invalid, whether the channel state blocks it, or whether the ledger could not
confirm a transaction (in which case the channel was restored and retry is safe).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCategory:
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    STATE_CONFLICT = "state_conflict"
    LEDGER_VERIFICATION = "ledger_verification"
    INFRASTRUCTURE = "infrastructure"


class ErrorCodes:
    # Validation
    INVALID_WALLET_ADDRESS = "INVALID_WALLET_ADDRESS"
    INVALID_CHANNEL_ID = "INVALID_CHANNEL_ID"
    INVALID_INPUT = "INVALID_INPUT"

    # Authorization
    UNAUTHORIZED = "UNAUTHORIZED"

    # Lookups
    ORGANIZATION_NOT_FOUND = "ORGANIZATION_NOT_FOUND"
    CHANNEL_NOT_FOUND = "CHANNEL_NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    REQUEST_NOT_FOUND = "REQUEST_NOT_FOUND"

    # Channel state
    CHANNEL_INACTIVE = "CHANNEL_INACTIVE"
    CHANNEL_ALREADY_EXISTS = "CHANNEL_ALREADY_EXISTS"
    CHANNEL_ID_IMMUTABLE = "CHANNEL_ID_IMMUTABLE"
    ALREADY_CLOSED = "ALREADY_CLOSED"
    CLOSURE_IN_PROGRESS = "CLOSURE_IN_PROGRESS"
    UNCLAIMED_BALANCE = "UNCLAIMED_BALANCE"
    NO_STALE_BALANCE = "NO_STALE_BALANCE"

    # Sessions
    ALREADY_CLOCKED_IN = "ALREADY_CLOCKED_IN"
    SESSION_NOT_ACTIVE = "SESSION_NOT_ACTIVE"
    SESSION_IN_PROGRESS = "SESSION_IN_PROGRESS"
    DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
    INSUFFICIENT_ESCROW = "INSUFFICIENT_ESCROW"

    # Closure requests
    REQUEST_ALREADY_PENDING = "REQUEST_ALREADY_PENDING"
    REQUEST_ALREADY_APPROVED = "REQUEST_ALREADY_APPROVED"
    INVALID_NOTIFICATION_TYPE = "INVALID_NOTIFICATION_TYPE"

    # Ledger
    LEDGER_VERIFICATION_FAILED = "LEDGER_VERIFICATION_FAILED"
    STALE_BALANCE_UNVERIFIED = "STALE_BALANCE_UNVERIFIED"
    LEDGER_UNAVAILABLE = "LEDGER_UNAVAILABLE"


class ChannelError(Exception):
    """Base for every engine failure that is reported to the caller."""

    category = ErrorCategory.INFRASTRUCTURE
    status_code = 500

    def __init__(self, code: str, message: str, context: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "category": self.category,
            "message": self.message,
            "context": self.context,
        }


class ValidationError(ChannelError):
    category = ErrorCategory.VALIDATION
    status_code = 400


class AuthorizationError(ChannelError):
    category = ErrorCategory.AUTHORIZATION
    status_code = 403

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCodes.UNAUTHORIZED, message, context)


class NotFoundError(ChannelError):
    category = ErrorCategory.NOT_FOUND
    status_code = 404


class StateConflictError(ChannelError):
    category = ErrorCategory.STATE_CONFLICT
    status_code = 409


class LedgerVerificationError(ChannelError):
    """
    The ledger did not confirm a client-reported transaction.
    Raised only after the compensating rollback has been committed.
    """

    category = ErrorCategory.LEDGER_VERIFICATION
    status_code = 422

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        ctx = {"channelRestored": True, "retrySafe": True}
        ctx.update(context or {})
        super().__init__(ErrorCodes.LEDGER_VERIFICATION_FAILED, message, ctx)


class LedgerUnavailableError(ChannelError):
    category = ErrorCategory.INFRASTRUCTURE
    status_code = 503

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCodes.LEDGER_UNAVAILABLE, message, context)


async def channel_error_handler(request: Request, exc: ChannelError) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "[error] %s %s code=%s category=%s",
        request.method,
        request.url.path,
        exc.code,
        exc.category,
        extra={"request_id": rid},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.to_dict(), "request_id": rid},
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # body/query schema failures get the same envelope as service-side validation
    fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
    err = ValidationError(
        ErrorCodes.INVALID_INPUT,
        "Request failed validation.",
        {"fields": [f for f in fields if f]},
    )
    return await channel_error_handler(request, err)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ChannelError, channel_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
