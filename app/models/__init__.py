# Importing the package registers every table on Base.metadata.
from app.models.organization import Organization  # noqa: F401
from app.models.worker import Worker  # noqa: F401
from app.models.payment_channel import PaymentChannel  # noqa: F401
from app.models.work_session import WorkSession  # noqa: F401
from app.models.worker_notification import WorkerNotification  # noqa: F401
from app.models.organization_notification import OrganizationNotification  # noqa: F401
from app.models.audit_log import ChannelAuditLog  # noqa: F401
