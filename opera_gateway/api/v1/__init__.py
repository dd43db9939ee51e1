"""
API v1 Router Module

Endpoints:
- POST /enhance          - Submit an enhancement job (201 + job descriptor)
- POST /enhance/general  - Full synchronous workflow (submit, poll, archive, record)
- GET  /status/{job_id}  - Upstream job state
- GET  /history          - Caller's processing history
- GET  /metrics          - Prometheus metrics
"""

from fastapi import APIRouter

from opera_gateway.api.v1.enhance import router as enhance_router
from opera_gateway.api.v1.status import router as status_router
from opera_gateway.api.v1.history import router as history_router
from opera_gateway.api.v1.metrics import router as metrics_router

api_v1_router = APIRouter()

api_v1_router.include_router(enhance_router, prefix="/enhance", tags=["enhancement"])
api_v1_router.include_router(status_router, prefix="/status", tags=["status"])
api_v1_router.include_router(history_router, prefix="/history", tags=["history"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
