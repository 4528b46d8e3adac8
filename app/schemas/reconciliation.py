from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.schemas.channels import ChannelOut


class SyncError(BaseModel):
    channelId: str
    reason: str
    destinationAddress: Optional[str] = None
    error: Optional[str] = None


class SyncAllResponse(BaseModel):
    """Counts per ledger channel; skipped channels also appear in errors when unmatched."""
    total: int
    imported: int
    updated: int
    skipped: int
    errors: List[SyncError] = Field(default_factory=list)


class ChannelSyncResponse(BaseModel):
    channel: ChannelOut
    outcome: str
    onLedger: Optional[bool] = None


class StaleBalanceListResponse(BaseModel):
    channels: List[ChannelOut]
    count: int


class ExpiredClosuresResponse(BaseModel):
    checked: int
    finalized: List[str]
    awaitingClaim: List[Dict[str, Any]]
    errors: List[Dict[str, Any]]
