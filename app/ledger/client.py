"""
Ledger RPC collaborator.

Only three reads are needed by the engine:
  - account_channels(address)     every channel the address funds
  - get_transaction(hash)         validation flag + result code of a submitted tx
  - get_channel_entry(channel_id) current channel object, or None once removed

The HTTP implementation speaks the XRPL-family JSON-RPC dialect. Services
depend on the LedgerClient protocol so tests can substitute an in-memory ledger.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol

import httpx

from app.core.config import get_settings
from app.core.errors import LedgerUnavailableError
from app.ledger.units import (
    SUCCESS_RESULT,
    TF_CLOSE,
    drops_to_units,
    ledger_time_to_datetime,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_ERRORS = {"entryNotFound", "txnNotFound", "actNotFound"}


@dataclass(frozen=True)
class LedgerChannel:
    channel_id: str
    account: str
    destination: str
    amount: Decimal  # escrow funded, display units
    balance: Decimal  # already paid out on-chain, display units
    settle_delay: int = 0
    expiration: Optional[int] = None  # ledger epoch seconds
    cancel_after: Optional[int] = None

    @property
    def expiration_time(self) -> Optional[datetime]:
        return ledger_time_to_datetime(self.expiration)


@dataclass(frozen=True)
class LedgerTransaction:
    hash: str
    validated: bool
    result_code: Optional[str]
    transaction_type: Optional[str] = None
    account: Optional[str] = None
    channel: Optional[str] = None
    balance: Optional[Decimal] = None
    flags: int = 0
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.validated and self.result_code == SUCCESS_RESULT

    @property
    def has_close_flag(self) -> bool:
        return bool(self.flags & TF_CLOSE)


class LedgerClient(Protocol):
    def account_channels(self, address: str) -> List[LedgerChannel]: ...

    def get_transaction(self, tx_hash: str) -> Optional[LedgerTransaction]: ...

    def get_channel_entry(self, channel_id: str) -> Optional[LedgerChannel]: ...


def _channel_from_account_channels(row: Dict[str, Any], account: str) -> LedgerChannel:
    return LedgerChannel(
        channel_id=str(row["channel_id"]).upper(),
        account=row.get("account") or account,
        destination=row["destination_account"],
        amount=drops_to_units(row.get("amount")),
        balance=drops_to_units(row.get("balance")),
        settle_delay=int(row.get("settle_delay") or 0),
        expiration=row.get("expiration"),
        cancel_after=row.get("cancel_after"),
    )


def _channel_from_entry(node: Dict[str, Any], channel_id: str) -> LedgerChannel:
    return LedgerChannel(
        channel_id=str(node.get("index") or channel_id).upper(),
        account=node["Account"],
        destination=node["Destination"],
        amount=drops_to_units(node.get("Amount")),
        balance=drops_to_units(node.get("Balance")),
        settle_delay=int(node.get("SettleDelay") or 0),
        expiration=node.get("Expiration"),
        cancel_after=node.get("CancelAfter"),
    )


def _transaction_from_result(result: Dict[str, Any], tx_hash: str) -> LedgerTransaction:
    tx = result.get("tx_json") or result
    meta = result.get("meta") or {}
    balance = tx.get("Balance")
    return LedgerTransaction(
        hash=str(result.get("hash") or tx_hash).upper(),
        validated=bool(result.get("validated")),
        result_code=meta.get("TransactionResult") if isinstance(meta, dict) else None,
        transaction_type=tx.get("TransactionType"),
        account=tx.get("Account"),
        channel=str(tx["Channel"]).upper() if tx.get("Channel") else None,
        balance=drops_to_units(balance) if balance is not None else None,
        flags=int(tx.get("Flags") or 0),
        raw=result,
    )


class HttpLedgerClient:
    """JSON-RPC over HTTP. One short-lived httpx.Client per engine instance."""

    def __init__(self, rpc_url: str, timeout: float = 20.0, client: Optional[httpx.Client] = None):
        self.rpc_url = rpc_url
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def _call(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self._client.post(
                self.rpc_url,
                json={"method": method, "params": [params]},
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("[ledger] rpc %s failed: %s", method, e)
            raise LedgerUnavailableError(
                "Ledger RPC unavailable; no state was changed.",
                {"method": method},
            ) from e

        result = body.get("result") or {}
        return result

    def account_channels(self, address: str) -> List[LedgerChannel]:
        channels: List[LedgerChannel] = []
        marker = None
        while True:
            params: Dict[str, Any] = {"account": address, "ledger_index": "validated"}
            if marker is not None:
                params["marker"] = marker
            result = self._call("account_channels", params)
            if result.get("status") == "error":
                if result.get("error") in _NOT_FOUND_ERRORS:
                    return []
                raise LedgerUnavailableError(
                    "Ledger rejected account_channels.",
                    {"error": result.get("error")},
                )
            channels.extend(
                _channel_from_account_channels(row, address) for row in result.get("channels") or []
            )
            marker = result.get("marker")
            if not marker:
                break
        logger.debug("[ledger] account_channels %s -> %d", address, len(channels))
        return channels

    def get_transaction(self, tx_hash: str) -> Optional[LedgerTransaction]:
        result = self._call("tx", {"transaction": tx_hash, "binary": False})
        if result.get("status") == "error":
            if result.get("error") in _NOT_FOUND_ERRORS:
                return None
            raise LedgerUnavailableError(
                "Ledger rejected tx lookup.",
                {"error": result.get("error")},
            )
        return _transaction_from_result(result, tx_hash)

    def get_channel_entry(self, channel_id: str) -> Optional[LedgerChannel]:
        result = self._call(
            "ledger_entry",
            {"payment_channel": channel_id, "ledger_index": "validated"},
        )
        if result.get("status") == "error":
            if result.get("error") in _NOT_FOUND_ERRORS:
                return None
            raise LedgerUnavailableError(
                "Ledger rejected ledger_entry.",
                {"error": result.get("error")},
            )
        node = result.get("node")
        if not node:
            return None
        return _channel_from_entry(node, channel_id)


_client: Optional[HttpLedgerClient] = None


def get_ledger_client() -> LedgerClient:
    """FastAPI dependency; tests override it with an in-memory ledger."""
    global _client
    if _client is None:
        settings = get_settings()
        _client = HttpLedgerClient(settings.ledger_rpc_url, timeout=settings.ledger_timeout_seconds)
    return _client
