from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class ClosureRequestCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    organizationWalletAddress: str
    channelId: str
    message: Optional[str] = None


class WalletBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    walletAddress: str


class WorkerNotificationOut(BaseModel):
    id: str
    workerWalletAddress: str
    organizationWalletAddress: Optional[str] = None
    type: str
    channelId: Optional[str] = None
    jobName: Optional[str] = None
    message: str
    isRead: bool
    readAt: Optional[str] = None
    closureApproved: bool
    closureApprovedAt: Optional[str] = None
    closureTxHash: Optional[str] = None
    createdAt: Optional[str] = None


class WorkerNotificationListResponse(BaseModel):
    notifications: List[WorkerNotificationOut]
    unreadCount: int


class UnreadCountResponse(BaseModel):
    unreadCount: int


class ClosureApprovalResponse(BaseModel):
    request: WorkerNotificationOut
    channelId: str
    balance: str
    escrowReturn: str
    jobName: str
    organizationName: str
    message: str = "Closure request approved. Proceed to close the channel from your wallet."


class OrganizationNotificationOut(BaseModel):
    id: str
    organizationId: str
    notificationType: str
    channelId: Optional[str] = None
    message: str
    details: Dict[str, Any]
    isRead: bool
    createdAt: Optional[str] = None


class OrganizationNotificationListResponse(BaseModel):
    notifications: List[OrganizationNotificationOut]
    count: int
