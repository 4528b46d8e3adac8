from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ClockInRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    workerWalletAddress: str
    channelId: str = Field(..., min_length=1)
    notes: Optional[str] = Field(default=None, max_length=2000)


class ClockOutRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    workerWalletAddress: str
    sessionId: str
    notes: Optional[str] = Field(default=None, max_length=2000)


class WorkSessionOut(BaseModel):
    id: str
    workerId: str
    channelRecordId: str
    clockIn: str
    clockOut: Optional[str] = None
    hourlyRate: str
    hoursWorked: Optional[str] = None
    totalAmount: Optional[str] = None
    sessionStatus: str
    notes: Optional[str] = None


class ClockOutResponse(BaseModel):
    session: WorkSessionOut
    accumulatedBalance: str
    hoursAccumulated: str
    capped: bool
    accrued: bool = True


class ActiveSessionOut(BaseModel):
    session: WorkSessionOut
    channelId: Optional[str]
    jobName: str
    elapsedSeconds: int
    currentHours: str
    currentEarnings: str
    workerName: Optional[str] = None
    workerWalletAddress: Optional[str] = None


class ActiveSessionListResponse(BaseModel):
    sessions: List[ActiveSessionOut]
    count: int


class SessionTimeoutResponse(BaseModel):
    checked: int
    timedOut: int
    sessionIds: List[str]
    unaccruedSessionIds: List[str] = Field(default_factory=list)
