from app.models.enums import ChannelStatus
from app.tests.support import CHANNEL_ID, ORG_WALLET, OTHER_WALLET, TX_HASH

API = "/api/v1"


def test_sync_all_reports_counts(client, ledger, make_channel):
    make_channel()
    ledger.open_channel(amount="150")
    ledger.open_channel("AB" * 32, destination=OTHER_WALLET)

    r = client.post(f"{API}/reconciliation/organizations/{ORG_WALLET}/sync-all")

    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 2
    assert body["updated"] == 1
    assert body["skipped"] == 1
    assert body["errors"][0]["reason"] == "WORKER_NOT_FOUND"


def test_sync_all_unknown_organization(client):
    r = client.post(f"{API}/reconciliation/organizations/{ORG_WALLET}/sync-all")

    assert r.status_code == 404
    assert r.json()["error"]["code"] == "ORGANIZATION_NOT_FOUND"


def test_missing_channel_notifies_organization(client, make_channel):
    make_channel(balance="4")

    r = client.post(f"{API}/reconciliation/channels/{CHANNEL_ID}/sync")

    assert r.json()["outcome"] == "missing"
    assert r.json()["channel"]["status"] == "closing"

    inbox = client.get(f"{API}/organization-notifications/{ORG_WALLET}").json()
    assert inbox["count"] == 1
    note = inbox["notifications"][0]
    assert note["notificationType"] == "channel_missing_on_ledger"

    read = client.put(f"{API}/organization-notifications/{note['id']}/read", json={"walletAddress": ORG_WALLET})
    assert read.status_code == 200


def test_stale_balance_listing_and_correction(client, db, ledger, make_channel):
    ch = make_channel(balance="20", status=ChannelStatus.closed.value)
    ch.closure_tx_hash = TX_HASH
    db.commit()

    listed = client.get(f"{API}/reconciliation/stale-balances").json()
    assert listed["count"] == 1

    refused = client.post(f"{API}/reconciliation/channels/{CHANNEL_ID}/correct-stale-balance")
    assert refused.status_code == 409
    assert refused.json()["error"]["code"] == "STALE_BALANCE_UNVERIFIED"

    ledger.record_claim(balance="20")
    fixed = client.post(f"{API}/reconciliation/channels/{CHANNEL_ID}/correct-stale-balance")
    assert fixed.status_code == 200
    assert fixed.json()["accumulatedBalance"] == "0"


def test_expired_closures_endpoint(client):
    r = client.post(f"{API}/reconciliation/expired-closures")

    assert r.status_code == 200
    assert r.json() == {"checked": 0, "finalized": [], "awaitingClaim": [], "errors": []}
