from app.schemas.channels import ChannelOut, ChannelRegisterRequest, CloseConfirmRequest, CloseProposeRequest
from app.schemas.sessions import ClockInRequest, ClockOutRequest, WorkSessionOut
from app.schemas.notifications import ClosureRequestCreate, WorkerNotificationOut, OrganizationNotificationOut
from app.schemas.reconciliation import SyncAllResponse, ChannelSyncResponse, ExpiredClosuresResponse
