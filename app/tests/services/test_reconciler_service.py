from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.core.errors import ErrorCodes, LedgerUnavailableError, NotFoundError, StateConflictError
from app.ledger.units import datetime_to_ledger_time
from app.models.enums import ChannelStatus
from app.models.organization_notification import OrganizationNotification
from app.models.payment_channel import PaymentChannel
from app.models.worker import Worker
from app.services import reconciler_service as recon_mod
from app.services.reconciler_service import IMPORTED_JOB_NAME, ReconcilerService
from app.tests.support import (
    CHANNEL_ID,
    ORG_WALLET,
    OTHER_CHANNEL_ID,
    OTHER_WALLET,
    TX_HASH,
)


@pytest.fixture
def svc(monkeypatch, clock):
    monkeypatch.setattr(recon_mod, "_now", clock)
    return ReconcilerService()


def add_worker(db, org, wallet=OTHER_WALLET):
    w = Worker(organization_id=org.id, full_name="Ben Worker", wallet_address=wallet)
    db.add(w)
    db.commit()
    return w


# ─────────────────────────────────────────────
# SYNC ALL
# ─────────────────────────────────────────────


def test_unknown_destination_is_skipped(db, svc, ledger, org):
    ledger.open_channel(destination=OTHER_WALLET)

    out = svc.sync_all(db, ledger, organization_wallet=ORG_WALLET)

    assert out["total"] == 1
    assert out["skipped"] == 1
    assert out["imported"] == 0
    assert out["errors"] == [
        {"channelId": CHANNEL_ID, "reason": "WORKER_NOT_FOUND", "destinationAddress": OTHER_WALLET}
    ]
    assert db.execute(select(PaymentChannel)).scalars().all() == []


def test_import_uses_placeholders(db, svc, ledger, org):
    add_worker(db, org)
    ledger.open_channel(OTHER_CHANNEL_ID, destination=OTHER_WALLET, amount="250", balance="40")

    out = svc.sync_all(db, ledger, organization_wallet=ORG_WALLET)

    assert out["imported"] == 1
    ch = db.execute(select(PaymentChannel)).scalar_one()
    assert ch.channel_id == OTHER_CHANNEL_ID
    assert ch.job_name == IMPORTED_JOB_NAME
    assert ch.hourly_rate == Decimal("0")
    assert ch.max_daily_hours == Decimal("8")
    assert ch.escrow_funded_amount == Decimal("250")
    assert ch.on_chain_balance == Decimal("40")
    assert ch.accumulated_balance == Decimal("0")
    assert ch.status == ChannelStatus.active.value


def test_existing_channels_follow_ledger_expiration(db, svc, ledger, clock, make_channel):
    ch = make_channel(balance="5")
    ledger.open_channel(amount="120", expiration=datetime_to_ledger_time(clock.now + timedelta(hours=1)))

    out = svc.sync_all(db, ledger, organization_wallet=ORG_WALLET)

    assert out["updated"] == 1
    db.refresh(ch)
    assert ch.status == ChannelStatus.closing.value
    assert ch.escrow_funded_amount == Decimal("120")
    assert ch.accumulated_balance == Decimal("5")
    assert ch.expiration_time is not None

    # expiration cleared on the ledger: back to active
    ledger.open_channel(amount="120")
    svc.sync_all(db, ledger, organization_wallet=ORG_WALLET)
    db.refresh(ch)
    assert ch.status == ChannelStatus.active.value


def test_closed_record_is_never_reopened(db, svc, ledger, make_channel):
    ch = make_channel(status=ChannelStatus.closed.value)
    ledger.open_channel()

    out = svc.sync_all(db, ledger, organization_wallet=ORG_WALLET)

    assert out["skipped"] == 1
    db.refresh(ch)
    assert ch.status == ChannelStatus.closed.value


def test_sync_all_ledger_outage_writes_nothing(db, svc, ledger, make_channel):
    make_channel()
    ledger.unavailable = True

    with pytest.raises(LedgerUnavailableError):
        svc.sync_all(db, ledger, organization_wallet=ORG_WALLET)


def test_sync_all_unknown_organization(db, svc, ledger):
    with pytest.raises(NotFoundError) as e:
        svc.sync_all(db, ledger, organization_wallet=ORG_WALLET)

    assert e.value.code == ErrorCodes.ORGANIZATION_NOT_FOUND
    assert ledger.calls == []


# ─────────────────────────────────────────────
# SINGLE CHANNEL
# ─────────────────────────────────────────────


def test_sync_channel_present_updates(db, svc, ledger, make_channel):
    ch = make_channel()
    ledger.open_channel(balance="12")

    out = svc.sync_channel(db, ledger, channel_id=CHANNEL_ID)

    assert out["outcome"] == "updated"
    db.refresh(ch)
    assert ch.on_chain_balance == Decimal("12")
    assert ch.last_ledger_sync is not None


def test_sync_channel_missing_holds_balance(db, svc, ledger, make_channel):
    ch = make_channel(balance="9")

    out = svc.sync_channel(db, ledger, channel_id=CHANNEL_ID)

    assert out["outcome"] == "missing"
    db.refresh(ch)
    assert ch.status == ChannelStatus.closing.value
    assert ch.accumulated_balance == Decimal("9")
    note = db.execute(select(OrganizationNotification)).scalar_one()
    assert note.notification_type == "channel_missing_on_ledger"


def test_sync_channel_missing_with_verified_closure(db, svc, ledger, make_channel):
    ch = make_channel(balance="9")
    ch.closure_tx_hash = TX_HASH
    db.commit()
    ledger.record_claim(balance="9")

    out = svc.sync_channel(db, ledger, channel_id=CHANNEL_ID)

    assert out["outcome"] == "closed"
    db.refresh(ch)
    assert ch.status == ChannelStatus.closed.value
    assert ch.accumulated_balance == Decimal("0")
    assert ch.on_chain_balance == Decimal("9")


def test_sync_channel_leaves_closed_alone(db, svc, ledger, make_channel):
    make_channel(status=ChannelStatus.closed.value)

    out = svc.sync_channel(db, ledger, channel_id=CHANNEL_ID)

    assert out["outcome"] == "unchanged"
    assert ledger.calls == []


# ─────────────────────────────────────────────
# STALE BALANCES
# ─────────────────────────────────────────────


def stale_channel(db, make_channel, tx_hash=TX_HASH):
    ch = make_channel(balance="20", status=ChannelStatus.closed.value)
    ch.closure_tx_hash = tx_hash
    db.commit()
    return ch


def test_find_stale_balances(db, svc, make_channel):
    ch = stale_channel(db, make_channel)
    make_channel(channel_id=OTHER_CHANNEL_ID, balance="3")

    assert [c.id for c in svc.find_stale_balances(db)] == [ch.id]


def test_correct_stale_balance_with_proof(db, svc, ledger, make_channel):
    ch = stale_channel(db, make_channel)
    ledger.record_claim(balance="20")

    svc.correct_stale_balance(db, ledger, channel_id=CHANNEL_ID)

    db.refresh(ch)
    assert ch.accumulated_balance == Decimal("0")
    assert ch.on_chain_balance == Decimal("20")
    assert ch.status == ChannelStatus.closed.value


def test_absence_alone_does_not_clear_stale_balance(db, svc, ledger, make_channel):
    ch = stale_channel(db, make_channel, tx_hash=None)

    with pytest.raises(StateConflictError) as e:
        svc.correct_stale_balance(db, ledger, channel_id=CHANNEL_ID)

    assert e.value.code == ErrorCodes.STALE_BALANCE_UNVERIFIED
    db.refresh(ch)
    assert ch.accumulated_balance == Decimal("20")


@pytest.mark.parametrize("claimed,result_code", [("5", "tesSUCCESS"), ("20", "tecNO_PERMISSION")])
def test_short_or_failed_claim_does_not_clear(db, svc, ledger, make_channel, claimed, result_code):
    stale_channel(db, make_channel)
    ledger.record_claim(balance=claimed, result_code=result_code)

    with pytest.raises(StateConflictError) as e:
        svc.correct_stale_balance(db, ledger, channel_id=CHANNEL_ID)

    assert e.value.code == ErrorCodes.STALE_BALANCE_UNVERIFIED


def test_stale_channel_still_on_ledger_is_not_cleared(db, svc, ledger, make_channel):
    stale_channel(db, make_channel)
    ledger.record_claim(balance="20")
    ledger.open_channel()

    with pytest.raises(StateConflictError) as e:
        svc.correct_stale_balance(db, ledger, channel_id=CHANNEL_ID)

    assert e.value.context["onLedger"] is True


def test_nothing_stale_to_correct(db, svc, ledger, make_channel):
    make_channel(balance="4")

    with pytest.raises(StateConflictError) as e:
        svc.correct_stale_balance(db, ledger, channel_id=CHANNEL_ID)

    assert e.value.code == ErrorCodes.NO_STALE_BALANCE


# ─────────────────────────────────────────────
# EXPIRED SCHEDULED CLOSURES
# ─────────────────────────────────────────────


def scheduled(db, make_channel, clock, channel_id, expires_in):
    ch = make_channel(channel_id=channel_id, balance="6", status=ChannelStatus.closing.value)
    ch.expiration_time = clock.now + expires_in
    db.commit()
    return ch


def test_expired_closures_finalize_when_gone(db, svc, ledger, clock, make_channel):
    gone = scheduled(db, make_channel, clock, CHANNEL_ID, timedelta(hours=1))
    still = scheduled(db, make_channel, clock, OTHER_CHANNEL_ID, timedelta(hours=1))
    ledger.open_channel(OTHER_CHANNEL_ID)

    clock.advance(hours=2)
    out = svc.reconcile_expired_closures(db, ledger)

    assert out["checked"] == 2
    assert out["finalized"] == [CHANNEL_ID]
    assert [a["channelId"] for a in out["awaitingClaim"]] == [OTHER_CHANNEL_ID]
    db.refresh(gone)
    db.refresh(still)
    assert gone.status == ChannelStatus.closed.value
    assert gone.accumulated_balance == Decimal("0")
    assert still.status == ChannelStatus.closing.value


def test_unexpired_closures_are_left_alone(db, svc, ledger, clock, make_channel):
    ch = scheduled(db, make_channel, clock, CHANNEL_ID, timedelta(hours=1))

    out = svc.reconcile_expired_closures(db, ledger)

    assert out["finalized"] == []
    assert ledger.calls == []
    db.refresh(ch)
    assert ch.status == ChannelStatus.closing.value


def test_expired_closure_ledger_errors_are_collected(db, svc, ledger, clock, make_channel):
    scheduled(db, make_channel, clock, CHANNEL_ID, timedelta(hours=1))
    ledger.unavailable = True
    clock.advance(hours=2)

    out = svc.reconcile_expired_closures(db, ledger)

    assert out["errors"] == [{"channelId": CHANNEL_ID, "reason": ErrorCodes.LEDGER_UNAVAILABLE}]
