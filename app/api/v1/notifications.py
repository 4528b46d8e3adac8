from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.v1.presenters import organization_notification_out, worker_notification_out
from app.db.session import get_db
from app.schemas.notifications import (
    OrganizationNotificationListResponse,
    OrganizationNotificationOut,
    UnreadCountResponse,
    WalletBody,
    WorkerNotificationListResponse,
    WorkerNotificationOut,
)
from app.services.notification_service import NotificationService

router = APIRouter()


# ---------------------------
# WORKER INBOX
# ---------------------------


@router.get("/worker-notifications/unread-count/{walletAddress}", response_model=UnreadCountResponse)
def worker_unread_count(walletAddress: str, db: Session = Depends(get_db)):
    return {"unreadCount": NotificationService().worker_unread_count(db, worker_wallet=walletAddress)}


@router.get("/worker-notifications/{walletAddress}", response_model=WorkerNotificationListResponse)
def list_worker_notifications(
    walletAddress: str,
    unreadOnly: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    svc = NotificationService()
    rows = svc.list_worker_notifications(db, worker_wallet=walletAddress, unread_only=unreadOnly)
    return {
        "notifications": [worker_notification_out(n) for n in rows],
        "unreadCount": svc.worker_unread_count(db, worker_wallet=walletAddress),
    }


@router.put("/worker-notifications/{notificationId}/read", response_model=WorkerNotificationOut)
def mark_worker_notification_read(
    notificationId: uuid.UUID,
    payload: WalletBody,
    db: Session = Depends(get_db),
):
    row = NotificationService().mark_worker_notification_read(
        db, worker_wallet=payload.walletAddress, notification_id=notificationId
    )
    return worker_notification_out(row)


# ---------------------------
# ORGANIZATION INBOX
# ---------------------------


@router.get(
    "/organization-notifications/{walletAddress}",
    response_model=OrganizationNotificationListResponse,
)
def list_organization_notifications(
    walletAddress: str,
    unreadOnly: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    rows = NotificationService().list_organization_notifications(
        db, organization_wallet=walletAddress, unread_only=unreadOnly
    )
    return {"notifications": [organization_notification_out(n) for n in rows], "count": len(rows)}


@router.put(
    "/organization-notifications/{notificationId}/read",
    response_model=OrganizationNotificationOut,
)
def mark_organization_notification_read(
    notificationId: uuid.UUID,
    payload: WalletBody,
    db: Session = Depends(get_db),
):
    row = NotificationService().mark_organization_notification_read(
        db, organization_wallet=payload.walletAddress, notification_id=notificationId
    )
    return organization_notification_out(row)
