"""Shared test doubles: wallets, ids, an in-memory ledger and a settable clock."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from app.core.errors import LedgerUnavailableError
from app.ledger.client import LedgerChannel, LedgerTransaction

ORG_WALLET = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"
WORKER_WALLET = "rPT1Sjq2YGrBMTttX4GZHjKu9dyfzbpAYe"
OTHER_WALLET = "rN7n7otQDd6FczFgLdSqtcsAUxDkw6fzRH"

CHANNEL_ID = "C1AE6DDDEEC05CF2978C0BAD6FE302948E9533691DC749DCDD3B9E5992CA6198"
OTHER_CHANNEL_ID = "5DB01B7FFED6B67E6B0414DED11E051D2EE2B7619CE0EAA6286D67A3A4D5BDB3"
TX_HASH = "E08D6E9754025BA2534A78707605E0601F03ACE063687A0CA1BDDACFCD1698C7"
BAD_TX_HASH = "F2A0FCB1E6E4C0E1A3E4E1D1C0B0A09080706050403020100F0E0D0C0B0A0908"


class FakeLedger:
    """In-memory ledger collaborator; state is set directly by each test."""

    def __init__(self) -> None:
        self.channels: Dict[str, LedgerChannel] = {}
        self.transactions: Dict[str, LedgerTransaction] = {}
        self.unavailable = False
        self.calls: List[str] = []

    def _guard(self, name: str) -> None:
        self.calls.append(name)
        if self.unavailable:
            raise LedgerUnavailableError("Ledger RPC unavailable; no state was changed.", {"method": name})

    # LedgerClient protocol
    def account_channels(self, address: str) -> List[LedgerChannel]:
        self._guard("account_channels")
        return [c for c in self.channels.values() if c.account == address]

    def get_transaction(self, tx_hash: str) -> Optional[LedgerTransaction]:
        self._guard("tx")
        return self.transactions.get(tx_hash.upper())

    def get_channel_entry(self, channel_id: str) -> Optional[LedgerChannel]:
        self._guard("ledger_entry")
        return self.channels.get(channel_id.upper())

    # test helpers
    def open_channel(
        self,
        channel_id: str = CHANNEL_ID,
        *,
        account: str = ORG_WALLET,
        destination: str = WORKER_WALLET,
        amount: str = "100",
        balance: str = "0",
        settle_delay: int = 3600,
        expiration: Optional[int] = None,
    ) -> LedgerChannel:
        ch = LedgerChannel(
            channel_id=channel_id,
            account=account,
            destination=destination,
            amount=Decimal(amount),
            balance=Decimal(balance),
            settle_delay=settle_delay,
            expiration=expiration,
        )
        self.channels[channel_id] = ch
        return ch

    def remove_channel(self, channel_id: str = CHANNEL_ID) -> None:
        self.channels.pop(channel_id, None)

    def record_claim(
        self,
        tx_hash: str = TX_HASH,
        *,
        channel_id: str = CHANNEL_ID,
        account: str = ORG_WALLET,
        balance: Optional[str] = "0",
        result_code: str = "tesSUCCESS",
        validated: bool = True,
        transaction_type: str = "PaymentChannelClaim",
        flags: int = 0x00020000,
    ) -> LedgerTransaction:
        tx = LedgerTransaction(
            hash=tx_hash,
            validated=validated,
            result_code=result_code,
            transaction_type=transaction_type,
            account=account,
            channel=channel_id,
            balance=Decimal(balance) if balance is not None else None,
            flags=flags,
        )
        self.transactions[tx_hash] = tx
        return tx


@dataclass
class Clock:
    """Stand-in for a module's _now(); advance() moves time forward."""

    now: datetime = field(default_factory=lambda: datetime(2026, 3, 2, 8, 0, 0, tzinfo=timezone.utc))

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now
