from app.tests.support import CHANNEL_ID, ORG_WALLET, OTHER_WALLET, TX_HASH, WORKER_WALLET

API = "/api/v1"


def request_closure(client, **overrides):
    body = {"organizationWalletAddress": ORG_WALLET, "channelId": CHANNEL_ID}
    body.update(overrides)
    return client.post(f"{API}/closure-requests", json=body)


def test_request_approve_and_close_as_worker(client, ledger, make_channel):
    make_channel(balance="30")

    created = request_closure(client)
    assert created.status_code == 201
    request_id = created.json()["id"]

    inbox = client.get(f"{API}/worker-notifications/{WORKER_WALLET}").json()
    assert inbox["unreadCount"] == 1
    assert inbox["notifications"][0]["type"] == "closure_request"
    assert client.get(f"{API}/worker-notifications/unread-count/{WORKER_WALLET}").json() == {"unreadCount": 1}

    approved = client.post(
        f"{API}/closure-requests/{request_id}/approve", json={"walletAddress": WORKER_WALLET}
    )
    assert approved.status_code == 200
    assert approved.json()["balance"] == "30"
    assert approved.json()["escrowReturn"] == "70"
    assert approved.json()["request"]["closureApproved"] is True

    proposed = client.post(
        f"{API}/payment-channels/{CHANNEL_ID}/close",
        json={"walletAddress": WORKER_WALLET, "forceClose": True},
    )
    assert proposed.json()["callerRole"] == "destination"

    ledger.record_claim(account=WORKER_WALLET, balance="30")
    confirmed = client.post(
        f"{API}/payment-channels/{CHANNEL_ID}/close/confirm",
        json={"walletAddress": WORKER_WALLET, "txHash": TX_HASH},
    )
    assert confirmed.json()["outcome"] == "closed"

    notes = client.get(f"{API}/worker-notifications/{WORKER_WALLET}").json()["notifications"]
    assert notes[0]["closureTxHash"] == TX_HASH


def test_duplicate_request_conflicts(client, make_channel):
    make_channel()
    request_closure(client)

    r = request_closure(client)

    assert r.status_code == 409
    assert r.json()["error"]["code"] == "REQUEST_ALREADY_PENDING"


def test_other_wallet_cannot_approve(client, make_channel):
    make_channel()
    request_id = request_closure(client).json()["id"]

    r = client.post(f"{API}/closure-requests/{request_id}/approve", json={"walletAddress": OTHER_WALLET})

    assert r.status_code == 403


def test_mark_worker_notification_read(client, make_channel):
    make_channel()
    request_id = request_closure(client).json()["id"]

    r = client.put(f"{API}/worker-notifications/{request_id}/read", json={"walletAddress": WORKER_WALLET})

    assert r.status_code == 200
    assert r.json()["isRead"] is True
    assert client.get(f"{API}/worker-notifications/unread-count/{WORKER_WALLET}").json()["unreadCount"] == 0
