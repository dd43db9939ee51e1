"""
Enhancement Endpoints

POST /enhance          - Submit a job, answer 201 with the job descriptor
POST /enhance/general  - Submit, wait for completion, archive and record (sync)
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from opera_gateway.api.dependencies import get_current_user, get_enhancement_service, get_settings
from opera_gateway.api.v1.parsing import parse_enhance_body
from opera_gateway.core.config import Settings
from opera_gateway.core.logging import LogContext, get_logger
from opera_gateway.engines.enhancement.services import EnhancementService
from opera_gateway.integrations.supabase_auth import AuthenticatedUser

logger = get_logger(__name__)
router = APIRouter()


@router.post("", status_code=201)
async def submit_enhancement(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    service: EnhancementService = Depends(get_enhancement_service),
    settings: Settings = Depends(get_settings),
):
    """
    Submit an image for enhancement and return immediately.

    Body: ``{"input": {"image": <data URI>, "scale", "sharpen", "denoise", "faceRecovery"}}``.
    Poll ``GET /status/{id}`` for progress.
    """
    parsed = await parse_enhance_body(request, settings, allow_multipart=False)

    with LogContext(stage="submission"):
        logger.info(
            "enhance_request_received",
            user_id=user.user_id,
            image_size_bytes=parsed.original_size_bytes,
            settings=parsed.settings.snapshot(),
        )
        job = await service.submit(parsed.image, parsed.settings)

    return JSONResponse(status_code=201, content=job.to_descriptor())


@router.post("/general")
async def run_general_enhancement(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    service: EnhancementService = Depends(get_enhancement_service),
    settings: Settings = Depends(get_settings),
):
    """
    Run a complete enhancement and answer once the result is stored.

    Accepts JSON (same shape as ``POST /enhance``) or multipart/form-data with an
    ``image`` file part and optional ``scale``, ``sharpen``, ``denoise`` and
    ``faceRecovery`` fields. Blocks for at most
    ``POLL_INTERVAL_SECONDS * POLL_MAX_ATTEMPTS`` and gives up early when the
    caller disconnects.
    """
    parsed = await parse_enhance_body(request, settings, allow_multipart=True)

    logger.info(
        "general_enhancement_received",
        user_id=user.user_id,
        image_name=parsed.image_name,
        image_size_bytes=parsed.original_size_bytes,
        settings=parsed.settings.snapshot(),
    )

    result = await service.run(
        user=user,
        image=parsed.image,
        settings=parsed.settings,
        image_name=parsed.image_name,
        original_size_bytes=parsed.original_size_bytes,
        is_cancelled=request.is_disconnected,
    )
    return result.to_response()
