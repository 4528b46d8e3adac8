import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from app.core.errors import LedgerUnavailableError
from app.ledger.client import HttpLedgerClient
from app.ledger.templates import build_close_template
from app.ledger.units import (
    TF_CLOSE,
    datetime_to_ledger_time,
    drops_to_units,
    ledger_time_to_datetime,
    units_to_drops,
)
from app.tests.support import CHANNEL_ID, ORG_WALLET, OTHER_CHANNEL_ID, TX_HASH, WORKER_WALLET

RPC_URL = "https://ledger.test/rpc"


def ledger_with(handler):
    return HttpLedgerClient(RPC_URL, client=httpx.Client(transport=httpx.MockTransport(handler)))


def rpc(request):
    body = json.loads(request.content)
    return body["method"], body["params"][0]


# ─────────────────────────────────────────────
# UNITS
# ─────────────────────────────────────────────


def test_drops_and_units():
    assert drops_to_units("12500000") == Decimal("12.5")
    assert drops_to_units(None) == Decimal("0")
    assert units_to_drops(Decimal("12.5")) == "12500000"
    # never rounds up past what was accrued
    assert units_to_drops(Decimal("0.0000019")) == "1"


def test_ledger_epoch():
    assert ledger_time_to_datetime(0) == datetime(2000, 1, 1, tzinfo=timezone.utc)
    assert ledger_time_to_datetime(None) is None
    moment = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
    assert ledger_time_to_datetime(datetime_to_ledger_time(moment)) == moment


def test_close_template_uses_close_flag():
    tx = build_close_template(account=WORKER_WALLET, channel_id=CHANNEL_ID, balance=Decimal("3.25"))

    assert tx["Flags"] == TF_CLOSE == 0x00020000
    assert tx["Balance"] == "3250000"
    assert tx["Account"] == WORKER_WALLET


# ─────────────────────────────────────────────
# RPC
# ─────────────────────────────────────────────


def test_account_channels_follows_marker():
    pages = {
        None: {"channels": [{"channel_id": CHANNEL_ID.lower(), "destination_account": WORKER_WALLET,
                             "amount": "100000000", "balance": "0", "settle_delay": 3600}],
               "marker": "page2"},
        "page2": {"channels": [{"channel_id": OTHER_CHANNEL_ID, "destination_account": WORKER_WALLET,
                                "amount": "5000000", "balance": "1000000", "settle_delay": 60,
                                "expiration": 800000000}]},
    }
    seen = []

    def handler(request):
        method, params = rpc(request)
        assert method == "account_channels"
        seen.append(params.get("marker"))
        return httpx.Response(200, json={"result": {"status": "success", **pages[params.get("marker")]}})

    channels = ledger_with(handler).account_channels(ORG_WALLET)

    assert seen == [None, "page2"]
    assert [c.channel_id for c in channels] == [CHANNEL_ID, OTHER_CHANNEL_ID]
    assert channels[0].account == ORG_WALLET
    assert channels[0].amount == Decimal("100")
    assert channels[1].balance == Decimal("1")
    assert channels[1].expiration_time == ledger_time_to_datetime(800000000)


def test_account_not_found_means_no_channels():
    def handler(request):
        return httpx.Response(200, json={"result": {"status": "error", "error": "actNotFound"}})

    assert ledger_with(handler).account_channels(ORG_WALLET) == []


def test_transaction_parsed():
    def handler(request):
        method, params = rpc(request)
        assert method == "tx"
        assert params["transaction"] == TX_HASH
        return httpx.Response(200, json={"result": {
            "status": "success",
            "hash": TX_HASH,
            "validated": True,
            "TransactionType": "PaymentChannelClaim",
            "Account": ORG_WALLET,
            "Channel": CHANNEL_ID,
            "Balance": "12500000",
            "Flags": TF_CLOSE,
            "meta": {"TransactionResult": "tesSUCCESS"},
        }})

    tx = ledger_with(handler).get_transaction(TX_HASH)

    assert tx.succeeded
    assert tx.has_close_flag
    assert tx.channel == CHANNEL_ID
    assert tx.balance == Decimal("12.5")


def test_unvalidated_transaction_is_not_success():
    def handler(request):
        return httpx.Response(200, json={"result": {
            "hash": TX_HASH,
            "validated": False,
            "TransactionType": "PaymentChannelClaim",
            "meta": {"TransactionResult": "tesSUCCESS"},
        }})

    assert ledger_with(handler).get_transaction(TX_HASH).succeeded is False


def test_missing_transaction_and_entry_return_none():
    def handler(request):
        method, _ = rpc(request)
        error = "txnNotFound" if method == "tx" else "entryNotFound"
        return httpx.Response(200, json={"result": {"status": "error", "error": error}})

    client = ledger_with(handler)
    assert client.get_transaction(TX_HASH) is None
    assert client.get_channel_entry(CHANNEL_ID) is None


def test_channel_entry_parsed():
    def handler(request):
        _, params = rpc(request)
        assert params["payment_channel"] == CHANNEL_ID
        return httpx.Response(200, json={"result": {"status": "success", "index": CHANNEL_ID, "node": {
            "Account": ORG_WALLET,
            "Destination": WORKER_WALLET,
            "Amount": "100000000",
            "Balance": "2000000",
            "SettleDelay": 3600,
            "Expiration": 800000000,
        }}})

    entry = ledger_with(handler).get_channel_entry(CHANNEL_ID)

    assert entry.destination == WORKER_WALLET
    assert entry.balance == Decimal("2")
    assert entry.settle_delay == 3600
    assert entry.expiration == 800000000


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(502, text="bad gateway"),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"result": {"status": "error", "error": "tooBusy"}}),
    ],
)
def test_transport_and_rpc_failures_raise_unavailable(response):
    client = ledger_with(lambda request: response)

    with pytest.raises(LedgerUnavailableError):
        client.get_channel_entry(CHANNEL_ID)


def test_connection_error_raises_unavailable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(LedgerUnavailableError):
        ledger_with(handler).account_channels(ORG_WALLET)
