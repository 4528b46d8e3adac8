from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.api.v1.presenters import money, worker_notification_out
from app.db.session import get_db
from app.schemas.notifications import (
    ClosureApprovalResponse,
    ClosureRequestCreate,
    WalletBody,
    WorkerNotificationOut,
)
from app.services.closure_request_service import ClosureRequestService

router = APIRouter(prefix="/closure-requests")


def _rid(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


@router.post("", response_model=WorkerNotificationOut, status_code=201)
def request_worker_closure(
    payload: ClosureRequestCreate,
    request: Request,
    db: Session = Depends(get_db),
):
    row = ClosureRequestService().request_worker_closure(
        db,
        organization_wallet=payload.organizationWalletAddress,
        channel_id=payload.channelId,
        message=payload.message,
        request_id=_rid(request),
    )
    return worker_notification_out(row)


@router.post("/{notificationId}/approve", response_model=ClosureApprovalResponse)
def approve_closure(
    notificationId: uuid.UUID,
    payload: WalletBody,
    request: Request,
    db: Session = Depends(get_db),
):
    out = ClosureRequestService().approve_closure(
        db,
        worker_wallet=payload.walletAddress,
        notification_id=notificationId,
        request_id=_rid(request),
    )
    return {
        "request": worker_notification_out(out["request"]),
        "channelId": out["channelId"],
        "balance": money(out["balance"]),
        "escrowReturn": money(out["escrowReturn"]),
        "jobName": out["jobName"],
        "organizationName": out["organizationName"],
    }
