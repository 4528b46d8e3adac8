#app/models/enums.py
from __future__ import annotations
from enum import Enum


class ChannelStatus(str, Enum):
    active = "active"
    closing = "closing"
    closed = "closed"


class SessionStatus(str, Enum):
    active = "active"
    completed = "completed"
    timeout = "timeout"


class ChannelRole(str, Enum):
    # source funds the channel, destination receives payouts
    source = "source"
    destination = "destination"


class EmploymentStatus(str, Enum):
    active = "active"
    inactive = "inactive"


class WorkerNotificationType(str, Enum):
    closure_request = "closure_request"


class OrganizationNotificationType(str, Enum):
    channel_closure_failed = "channel_closure_failed"
    channel_missing_on_ledger = "channel_missing_on_ledger"
