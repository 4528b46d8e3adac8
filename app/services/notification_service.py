from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import AuthorizationError, ErrorCodes, NotFoundError
from app.models.organization import Organization
from app.models.organization_notification import OrganizationNotification
from app.models.worker_notification import WorkerNotification

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


class NotificationService:
    """
    Notification sink.

    notify_organization() is best-effort: it runs after the primary transaction
    has committed and a failure here is logged and dropped, never raised.
    """

    # ─────────────────────────────────────────────
    # SINK (best effort)
    # ─────────────────────────────────────────────

    def notify_organization(
        self,
        db: Session,
        *,
        organization_id: uuid.UUID,
        notification_type: str,
        message: str,
        channel_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[OrganizationNotification]:
        try:
            row = OrganizationNotification(
                organization_id=organization_id,
                notification_type=notification_type,
                channel_id=channel_id,
                message=message,
                details_json=details or {},
            )
            db.add(row)
            db.commit()
            return row
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "[notifications] dropped %s for organization=%s channel=%s",
                notification_type,
                organization_id,
                channel_id,
            )
            return None

    # ─────────────────────────────────────────────
    # ORGANIZATION INBOX
    # ─────────────────────────────────────────────

    def list_organization_notifications(
        self,
        db: Session,
        *,
        organization_wallet: str,
        unread_only: bool = False,
    ) -> List[OrganizationNotification]:
        org = self._organization(db, organization_wallet)
        q = select(OrganizationNotification).where(
            OrganizationNotification.organization_id == org.id
        )
        if unread_only:
            q = q.where(OrganizationNotification.is_read.is_(False))
        return list(db.execute(q.order_by(OrganizationNotification.created_at.desc())).scalars().all())

    def mark_organization_notification_read(
        self,
        db: Session,
        *,
        organization_wallet: str,
        notification_id: uuid.UUID,
    ) -> OrganizationNotification:
        org = self._organization(db, organization_wallet)
        row = db.get(OrganizationNotification, notification_id)
        if not row:
            raise NotFoundError(ErrorCodes.REQUEST_NOT_FOUND, "Notification not found.")
        if row.organization_id != org.id:
            raise AuthorizationError("Notification belongs to a different organization.")
        row.is_read = True
        db.commit()
        db.refresh(row)
        return row

    # ─────────────────────────────────────────────
    # WORKER INBOX
    # ─────────────────────────────────────────────

    def list_worker_notifications(
        self,
        db: Session,
        *,
        worker_wallet: str,
        unread_only: bool = False,
    ) -> List[WorkerNotification]:
        q = select(WorkerNotification).where(
            WorkerNotification.worker_wallet_address == worker_wallet
        )
        if unread_only:
            q = q.where(WorkerNotification.is_read.is_(False))
        return list(db.execute(q.order_by(WorkerNotification.created_at.desc())).scalars().all())

    def worker_unread_count(self, db: Session, *, worker_wallet: str) -> int:
        return int(
            db.execute(
                select(func.count(WorkerNotification.id)).where(
                    WorkerNotification.worker_wallet_address == worker_wallet,
                    WorkerNotification.is_read.is_(False),
                )
            ).scalar_one()
        )

    def mark_worker_notification_read(
        self,
        db: Session,
        *,
        worker_wallet: str,
        notification_id: uuid.UUID,
    ) -> WorkerNotification:
        row = db.get(WorkerNotification, notification_id)
        if not row:
            raise NotFoundError(ErrorCodes.REQUEST_NOT_FOUND, "Notification not found.")
        if row.worker_wallet_address != worker_wallet:
            raise AuthorizationError("Notification belongs to a different worker.")
        if not row.is_read:
            row.is_read = True
            row.read_at = _now()
            db.commit()
            db.refresh(row)
        return row

    def _organization(self, db: Session, wallet: str) -> Organization:
        org = db.execute(
            select(Organization).where(Organization.wallet_address == wallet)
        ).scalar_one_or_none()
        if not org:
            raise NotFoundError(ErrorCodes.ORGANIZATION_NOT_FOUND, "Organization not found.")
        return org
