import uuid
from decimal import Decimal

import pytest

from app.core.errors import (
    AuthorizationError,
    ErrorCodes,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from app.models.enums import ChannelStatus
from app.models.worker_notification import WorkerNotification
from app.services.closure_request_service import ClosureRequestService
from app.tests.support import CHANNEL_ID, ORG_WALLET, OTHER_WALLET, WORKER_WALLET


@pytest.fixture
def svc():
    return ClosureRequestService()


def test_request_creates_pending_notification(db, svc, make_channel):
    make_channel(balance="30")

    row = svc.request_worker_closure(db, organization_wallet=ORG_WALLET, channel_id=CHANNEL_ID)

    assert row.worker_wallet_address == WORKER_WALLET
    assert row.organization_wallet_address == ORG_WALLET
    assert row.type == "closure_request"
    assert row.closure_approved is False
    assert row.is_read is False
    assert "Shelter Intake" in row.message
    assert "30" in row.message


def test_custom_message_is_kept(db, svc, make_channel):
    make_channel()

    row = svc.request_worker_closure(
        db, organization_wallet=ORG_WALLET, channel_id=CHANNEL_ID, message="  Season is over.  "
    )

    assert row.message == "Season is over."


def test_only_one_pending_request_per_channel(db, svc, make_channel):
    make_channel()
    svc.request_worker_closure(db, organization_wallet=ORG_WALLET, channel_id=CHANNEL_ID)

    with pytest.raises(StateConflictError) as e:
        svc.request_worker_closure(db, organization_wallet=ORG_WALLET, channel_id=CHANNEL_ID)

    assert e.value.code == ErrorCodes.REQUEST_ALREADY_PENDING


def test_worker_cannot_request(db, svc, make_channel):
    make_channel()

    with pytest.raises(AuthorizationError):
        svc.request_worker_closure(db, organization_wallet=WORKER_WALLET, channel_id=CHANNEL_ID)


@pytest.mark.parametrize(
    "status,code",
    [
        (ChannelStatus.closing.value, ErrorCodes.CLOSURE_IN_PROGRESS),
        (ChannelStatus.closed.value, ErrorCodes.ALREADY_CLOSED),
    ],
)
def test_request_needs_active_channel(db, svc, make_channel, status, code):
    make_channel(status=status)

    with pytest.raises(StateConflictError) as e:
        svc.request_worker_closure(db, organization_wallet=ORG_WALLET, channel_id=CHANNEL_ID)

    assert e.value.code == code


def test_approve_returns_payoff_and_leaves_channel_active(db, svc, make_channel):
    ch = make_channel(escrow="100", balance="30")
    req = svc.request_worker_closure(db, organization_wallet=ORG_WALLET, channel_id=CHANNEL_ID)

    out = svc.approve_closure(db, worker_wallet=WORKER_WALLET, notification_id=req.id)

    assert out["balance"] == Decimal("30")
    assert out["escrowReturn"] == Decimal("70")
    assert out["organizationName"] == "Harbor Relief"
    assert out["request"].closure_approved is True
    assert out["request"].is_read is True
    db.refresh(ch)
    assert ch.status == ChannelStatus.active.value


def test_approve_twice_conflicts_and_allows_new_request(db, svc, make_channel):
    make_channel()
    req = svc.request_worker_closure(db, organization_wallet=ORG_WALLET, channel_id=CHANNEL_ID)
    svc.approve_closure(db, worker_wallet=WORKER_WALLET, notification_id=req.id)

    with pytest.raises(StateConflictError) as e:
        svc.approve_closure(db, worker_wallet=WORKER_WALLET, notification_id=req.id)
    assert e.value.code == ErrorCodes.REQUEST_ALREADY_APPROVED

    again = svc.request_worker_closure(db, organization_wallet=ORG_WALLET, channel_id=CHANNEL_ID)
    assert again.id != req.id


def test_approve_by_other_wallet_is_rejected(db, svc, make_channel):
    make_channel()
    req = svc.request_worker_closure(db, organization_wallet=ORG_WALLET, channel_id=CHANNEL_ID)

    with pytest.raises(AuthorizationError):
        svc.approve_closure(db, worker_wallet=OTHER_WALLET, notification_id=req.id)


def test_approve_unknown_request(db, svc):
    with pytest.raises(NotFoundError) as e:
        svc.approve_closure(db, worker_wallet=WORKER_WALLET, notification_id=uuid.uuid4())

    assert e.value.code == ErrorCodes.REQUEST_NOT_FOUND


def test_approve_rejects_other_notification_types(db, svc, make_channel):
    make_channel()
    row = WorkerNotification(
        worker_wallet_address=WORKER_WALLET,
        type="payment_received",
        channel_id=CHANNEL_ID,
        message="Paid.",
    )
    db.add(row)
    db.commit()

    with pytest.raises(ValidationError) as e:
        svc.approve_closure(db, worker_wallet=WORKER_WALLET, notification_id=row.id)

    assert e.value.code == ErrorCodes.INVALID_NOTIFICATION_TYPE


def test_approve_after_channel_left_active(db, svc, make_channel):
    ch = make_channel()
    req = svc.request_worker_closure(db, organization_wallet=ORG_WALLET, channel_id=CHANNEL_ID)
    ch.status = ChannelStatus.closing.value
    db.commit()

    with pytest.raises(StateConflictError) as e:
        svc.approve_closure(db, worker_wallet=WORKER_WALLET, notification_id=req.id)

    assert e.value.code == ErrorCodes.CHANNEL_INACTIVE
