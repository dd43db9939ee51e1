"""
Metrics Endpoint

GET /metrics - Prometheus metrics endpoint
"""

from fastapi import APIRouter, Response

from opera_gateway.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter()


@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Exposes:
    - http_requests_total / http_request_duration_seconds
    - upstream_api_calls_total
    - enhancement_poll_attempts
    - enhancement_jobs_total
    - storage_fallbacks_total / history_write_failures_total
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
