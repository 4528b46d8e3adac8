from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.api.v1.presenters import money, session_out
from app.core.errors import ErrorCodes, ValidationError
from app.db.session import get_db
from app.schemas.sessions import (
    ActiveSessionListResponse,
    ClockInRequest,
    ClockOutRequest,
    ClockOutResponse,
    SessionTimeoutResponse,
    WorkSessionOut,
)
from app.services.work_session_service import WorkSessionService

router = APIRouter(prefix="/work-sessions")


def _rid(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def _active_view(view: dict) -> dict:
    return {
        "session": session_out(view["session"]),
        "channelId": view["channelId"],
        "jobName": view["jobName"],
        "elapsedSeconds": view["elapsedSeconds"],
        "currentHours": money(view["currentHours"]),
        "currentEarnings": money(view["currentEarnings"]),
        "workerName": view.get("workerName"),
        "workerWalletAddress": view.get("workerWalletAddress"),
    }


@router.post("/clock-in", response_model=WorkSessionOut, status_code=201)
def clock_in(payload: ClockInRequest, request: Request, db: Session = Depends(get_db)):
    ws = WorkSessionService().clock_in(
        db,
        worker_wallet=payload.workerWalletAddress,
        channel_ref=payload.channelId,
        notes=payload.notes,
        request_id=_rid(request),
    )
    return session_out(ws)


@router.post("/clock-out", response_model=ClockOutResponse)
def clock_out(payload: ClockOutRequest, request: Request, db: Session = Depends(get_db)):
    try:
        sid = uuid.UUID(payload.sessionId)
    except ValueError:
        raise ValidationError(ErrorCodes.INVALID_INPUT, "sessionId must be UUID.", {"field": "sessionId"})

    result = WorkSessionService().clock_out(
        db,
        worker_wallet=payload.workerWalletAddress,
        session_id=sid,
        notes=payload.notes,
        request_id=_rid(request),
    )
    return {
        "session": session_out(result.session),
        "accumulatedBalance": money(result.channel.accumulated_balance),
        "hoursAccumulated": money(result.channel.hours_accumulated),
        "capped": result.capped,
        "accrued": result.accrued,
    }


@router.get("/active/{walletAddress}", response_model=ActiveSessionListResponse)
def list_active_sessions(walletAddress: str, db: Session = Depends(get_db)):
    views = WorkSessionService().list_active_sessions(db, worker_wallet=walletAddress)
    return {"sessions": [_active_view(v) for v in views], "count": len(views)}


@router.get("/organization-active/{walletAddress}", response_model=ActiveSessionListResponse)
def list_organization_active_sessions(walletAddress: str, db: Session = Depends(get_db)):
    views = WorkSessionService().list_organization_active_sessions(
        db, organization_wallet=walletAddress
    )
    return {"sessions": [_active_view(v) for v in views], "count": len(views)}


@router.post("/timeout-sweep", response_model=SessionTimeoutResponse)
def timeout_stale_sessions(db: Session = Depends(get_db)):
    """Operator hook; run from cron or by hand."""
    return WorkSessionService().timeout_stale_sessions(db)
