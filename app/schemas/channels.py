#app/schemas/channels.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# -----------------------
# REQUESTS
# -----------------------


class ChannelRegisterRequest(BaseModel):
    """
    Sent by the organization's client after its create transaction validated.
    channelId may be omitted and assigned later.
    """
    model_config = ConfigDict(extra="forbid")

    organizationWalletAddress: str = Field(..., min_length=1)
    workerWalletAddress: str = Field(..., min_length=1)
    workerName: str = Field(..., min_length=1, max_length=255)
    jobName: Optional[str] = Field(default=None, max_length=255)
    hourlyRate: Decimal = Field(..., gt=0)
    fundingAmount: Decimal = Field(..., gt=0)
    channelId: Optional[str] = None
    settleDelaySeconds: int = Field(default=0, ge=0)
    maxDailyHours: Optional[Decimal] = Field(default=None, gt=0, le=24)


class ChannelIdAssignRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    channelId: str = Field(..., min_length=1)


class CreateTemplateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    organizationWalletAddress: str
    workerWalletAddress: str
    fundingAmount: Decimal = Field(..., gt=0)
    settleDelaySeconds: int = Field(default=3600, ge=0)
    cancelAfter: Optional[datetime] = None


class CloseProposeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    walletAddress: str
    forceClose: bool = False


class CloseConfirmRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    walletAddress: str
    txHash: str


# -----------------------
# RESPONSES
# -----------------------


class ChannelOut(BaseModel):
    id: str
    channelId: Optional[str]
    organizationId: str
    workerId: str
    jobName: str

    hourlyRate: str
    maxDailyHours: str
    escrowFundedAmount: str
    accumulatedBalance: str
    onChainBalance: str
    hoursAccumulated: str
    availableEscrow: str

    status: str
    settleDelaySeconds: int
    expirationTime: Optional[str] = None
    closureTxHash: Optional[str] = None
    closedAt: Optional[str] = None
    lastLedgerSync: Optional[str] = None
    validationAttempts: int
    lastValidationAt: Optional[str] = None


class ChannelListResponse(BaseModel):
    channels: List[ChannelOut]
    count: int


class CloseProposeResponse(BaseModel):
    channel: ChannelOut
    callerRole: str
    balanceToWorker: str
    escrowReturn: str
    transaction: Dict[str, Any]


class CloseConfirmResponse(BaseModel):
    channel: ChannelOut
    callerRole: str
    outcome: str
    paidOut: Optional[str] = None
    alreadyConfirmed: bool = False
