"""
Unsigned transaction templates handed to the external wallet.
The engine never signs or submits; the wallet returns a tx hash that
closure confirmation then verifies against the ledger.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from app.ledger.units import TF_CLOSE, datetime_to_ledger_time, units_to_drops


def build_close_template(*, account: str, channel_id: str, balance: Decimal) -> Dict[str, Any]:
    # Balance is the cumulative amount the worker ends up with; escrow remainder returns to source
    return {
        "TransactionType": "PaymentChannelClaim",
        "Account": account,
        "Channel": channel_id,
        "Balance": units_to_drops(balance),
        "Flags": TF_CLOSE,
    }


def build_create_template(
    *,
    account: str,
    destination: str,
    amount: Decimal,
    settle_delay_seconds: int,
    expiration: Optional[datetime] = None,
) -> Dict[str, Any]:
    tx: Dict[str, Any] = {
        "TransactionType": "PaymentChannelCreate",
        "Account": account,
        "Destination": destination,
        "Amount": units_to_drops(amount),
        "SettleDelay": int(settle_delay_seconds),
    }
    if expiration is not None:
        tx["CancelAfter"] = datetime_to_ledger_time(expiration)
    return tx
