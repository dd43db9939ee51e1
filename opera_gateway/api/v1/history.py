"""
Processing History Endpoint

GET /history - The caller's most recent completed enhancements
"""

from fastapi import APIRouter, Depends, Query

from opera_gateway.api.dependencies import get_current_user, get_history_repo
from opera_gateway.engines.enhancement.repositories import HistoryRepository
from opera_gateway.integrations.supabase_auth import AuthenticatedUser

router = APIRouter()


@router.get("")
async def list_history(
    limit: int = Query(default=50, ge=1, le=100),
    user: AuthenticatedUser = Depends(get_current_user),
    history: HistoryRepository = Depends(get_history_repo),
):
    entries = await history.list_for_user(user.user_id, limit=limit)
    return {
        "items": [
            {
                "id": entry.id,
                "jobId": entry.job_id,
                "imageName": entry.image_name,
                "processingType": entry.processing_type,
                "settings": entry.enhancement_settings,
                "creditsConsumed": entry.credits_consumed,
                "status": entry.status,
                "resultUrl": entry.result_url,
                "createdAt": entry.created_at.isoformat(),
            }
            for entry in entries
        ]
    }
