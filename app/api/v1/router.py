from fastapi import APIRouter

from app.api.v1.health import router as health_router
from app.api.v1.payment_channels import router as payment_channels_router
from app.api.v1.work_sessions import router as work_sessions_router
from app.api.v1.closure_requests import router as closure_requests_router
from app.api.v1.notifications import router as notifications_router
from app.api.v1.reconciliation import router as reconciliation_router

v1_router = APIRouter()

v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(payment_channels_router, tags=["payment-channels"])
v1_router.include_router(work_sessions_router, tags=["work-sessions"])
v1_router.include_router(closure_requests_router, tags=["closure-requests"])
v1_router.include_router(notifications_router, tags=["notifications"])
v1_router.include_router(reconciliation_router, tags=["reconciliation"])
