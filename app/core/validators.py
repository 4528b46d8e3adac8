from __future__ import annotations

import re
from typing import Optional

from app.core.errors import ErrorCodes, ValidationError

# 'r' + 25-34 base58 characters (no 0, O, I, l)
WALLET_ADDRESS_RE = re.compile(r"^r[1-9A-HJ-NP-Za-km-z]{25,34}$")
CHANNEL_ID_RE = re.compile(r"^[0-9A-Fa-f]{64}$")
TX_HASH_RE = re.compile(r"^[0-9A-Fa-f]{64}$")


def require_wallet_address(value: Optional[str], field: str = "walletAddress") -> str:
    if not value:
        raise ValidationError(ErrorCodes.INVALID_INPUT, f"{field} is required.", {"field": field})
    if not WALLET_ADDRESS_RE.match(value):
        raise ValidationError(
            ErrorCodes.INVALID_WALLET_ADDRESS,
            'Invalid wallet address format. Must start with "r" followed by 25-34 base58 characters.',
            {"field": field},
        )
    return value


def require_channel_id(value: Optional[str], field: str = "channelId") -> str:
    """Returns the canonical (upper-case) ledger channel id."""
    if not value:
        raise ValidationError(ErrorCodes.INVALID_INPUT, f"{field} is required.", {"field": field})
    if not CHANNEL_ID_RE.match(value):
        raise ValidationError(
            ErrorCodes.INVALID_CHANNEL_ID,
            "Invalid channel id format. Must be a 64-character hexadecimal string.",
            {"field": field},
        )
    return value.upper()


def require_tx_hash(value: Optional[str], field: str = "txHash") -> str:
    if not value:
        raise ValidationError(ErrorCodes.INVALID_INPUT, f"{field} is required.", {"field": field})
    if not TX_HASH_RE.match(value):
        raise ValidationError(
            ErrorCodes.INVALID_INPUT,
            "Invalid transaction hash format. Must be a 64-character hexadecimal string.",
            {"field": field},
        )
    return value.upper()
