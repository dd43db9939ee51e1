"""
FastAPI Dependencies

Collaborators are built once per application in the lifespan handler and
stored on ``app.state.services``; routes receive them through Depends().
Nothing here is a process-wide singleton.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from opera_gateway.core.config import Settings
from opera_gateway.core.exceptions import AuthError
from opera_gateway.core.logging import get_logger
from opera_gateway.core.storage import IStorage, build_storage
from opera_gateway.engines.enhancement.repositories import HistoryRepository
from opera_gateway.engines.enhancement.services import (
    EnhancementService,
    HistoryRecorder,
    JobPoller,
    ResultArchiver,
)
from opera_gateway.integrations.replicate_client import InferenceClient
from opera_gateway.integrations.supabase_auth import AuthenticatedUser, IdentityClient

logger = get_logger(__name__)


@dataclass
class GatewayServices:
    settings: Settings
    identity: IdentityClient
    storage: IStorage
    history: HistoryRepository
    enhancement: EnhancementService


def build_services(
    settings: Settings,
    http_client: httpx.AsyncClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> GatewayServices:
    """Wire every collaborator from settings and the shared HTTP client."""
    timeout = httpx.Timeout(
        settings.UPSTREAM_TIMEOUT_SECONDS,
        connect=settings.UPSTREAM_CONNECT_TIMEOUT_SECONDS,
    )

    identity = IdentityClient(
        http_client=http_client,
        supabase_url=settings.SUPABASE_URL,
        anon_key=settings.SUPABASE_ANON_KEY,
        timeout=timeout,
    )
    inference = InferenceClient(
        http_client=http_client,
        base_url=settings.REPLICATE_API_URL,
        api_token=settings.REPLICATE_API_TOKEN,
        model_version=settings.REPLICATE_MODEL_VERSION,
        timeout=timeout,
    )
    storage = build_storage(settings, http_client)
    history = HistoryRepository(session_factory)

    enhancement = EnhancementService(
        inference=inference,
        poller=JobPoller(
            inference,
            poll_interval=settings.POLL_INTERVAL_SECONDS,
            max_attempts=settings.POLL_MAX_ATTEMPTS,
            backoff_factor=settings.POLL_BACKOFF_FACTOR,
            max_interval=settings.POLL_MAX_INTERVAL_SECONDS,
        ),
        archiver=ResultArchiver(http_client, storage, timeout=timeout),
        recorder=HistoryRecorder(history),
        credits_per_job=settings.CREDITS_PER_ENHANCEMENT,
    )

    return GatewayServices(
        settings=settings,
        identity=identity,
        storage=storage,
        history=history,
        enhancement=enhancement,
    )


# =============================================================================
# Providers
# =============================================================================

def get_services(request: Request) -> GatewayServices:
    return request.app.state.services


def get_settings(services: GatewayServices = Depends(get_services)) -> Settings:
    return services.settings


def get_enhancement_service(services: GatewayServices = Depends(get_services)) -> EnhancementService:
    return services.enhancement


def get_history_repo(services: GatewayServices = Depends(get_services)) -> HistoryRepository:
    return services.history


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Please provide a valid Bearer token")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise AuthError("Please provide a valid Bearer token")
    return token


async def get_current_user(
    request: Request,
    services: GatewayServices = Depends(get_services),
) -> AuthenticatedUser:
    """Resolve the caller from the Authorization header. Runs before any body parsing."""
    token = extract_bearer_token(request.headers.get("Authorization"))
    user = await services.identity.verify_token(token)
    logger.info("user_authenticated", user_id=user.user_id)
    return user
