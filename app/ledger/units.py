"""
Ledger unit and clock conversions.

The ledger counts time from 2000-01-01T00:00:00Z ("ledger epoch") and amounts in
drops (1 unit = 1,000,000 drops). Nothing else in the codebase should know
either constant.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN
from typing import Optional, Union

LEDGER_EPOCH_OFFSET = 946684800  # seconds between 1970-01-01 and 2000-01-01 UTC
DROPS_PER_UNIT = Decimal(1_000_000)

# PaymentChannelClaim flag: close the channel (immediately if permitted)
TF_CLOSE = 0x00020000

SUCCESS_RESULT = "tesSUCCESS"


def ledger_time_to_datetime(ledger_seconds: Optional[int]) -> Optional[datetime]:
    if ledger_seconds is None:
        return None
    return datetime.fromtimestamp(int(ledger_seconds) + LEDGER_EPOCH_OFFSET, tz=timezone.utc)


def datetime_to_ledger_time(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp()) - LEDGER_EPOCH_OFFSET


def drops_to_units(drops: Union[str, int, None]) -> Decimal:
    if drops in (None, ""):
        return Decimal("0")
    return Decimal(str(drops)) / DROPS_PER_UNIT


def units_to_drops(amount: Union[Decimal, str, int, float]) -> str:
    """Round down: never instruct the ledger to pay out more than was accrued."""
    d = Decimal(str(amount)) * DROPS_PER_UNIT
    return str(int(d.to_integral_value(rounding=ROUND_DOWN)))
