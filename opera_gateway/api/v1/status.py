"""
Job Status Endpoint

GET /status/{job_id} - Mirror of the inference service's job state
"""

from fastapi import APIRouter, Depends

from opera_gateway.api.dependencies import get_current_user, get_enhancement_service
from opera_gateway.core.logging import get_logger
from opera_gateway.engines.enhancement.services import EnhancementService
from opera_gateway.integrations.supabase_auth import AuthenticatedUser

logger = get_logger(__name__)
router = APIRouter()


@router.get("/{job_id}")
async def get_job_status(
    job_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    service: EnhancementService = Depends(get_enhancement_service),
):
    """Return id, status, output, error and timestamps as reported upstream."""
    job = await service.get_status(job_id)
    logger.info(
        "job_status_retrieved",
        job_id=job.id,
        status=job.status.value,
        has_output=job.output is not None,
    )
    return job.to_descriptor()
