"""
Opera Studio Enhancement Gateway - Main Application

FastAPI application with:
- Bearer authentication against the identity provider
- Job submission and status mirroring for the inference API
- Synchronous enhancement workflow (submit, poll, archive, record)
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.staticfiles import StaticFiles

from opera_gateway.api.dependencies import build_services
from opera_gateway.api.v1 import api_v1_router
from opera_gateway.core.config import Settings, settings as default_settings
from opera_gateway.core.database import create_db_and_tables, create_engine, create_session_factory
from opera_gateway.core.exceptions import GlobalExceptionMiddleware, register_exception_handlers
from opera_gateway.core.logging import get_logger, setup_logging
from opera_gateway.core.metrics import http_request_duration_seconds, http_requests_total, set_app_info

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Explicit settings; defaults to the environment-derived instance
        transport: Optional httpx transport for every outbound call (tests)
    """
    settings = settings or default_settings

    setup_logging(
        log_level=settings.LOG_LEVEL,
        json_format=settings.LOG_FORMAT_JSON,
        app_version=settings.APP_VERSION,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler - build collaborators, then tear them down."""
        startup_start = time.time()

        logger.info(
            "application_starting",
            app_name=settings.APP_NAME,
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT
        )

        engine = create_engine(settings.DATABASE_URL)
        await create_db_and_tables(engine)
        logger.info("database_initialized")

        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                settings.UPSTREAM_TIMEOUT_SECONDS,
                connect=settings.UPSTREAM_CONNECT_TIMEOUT_SECONDS,
            ),
            transport=transport,
        )
        app.state.services = build_services(settings, http_client, create_session_factory(engine))
        logger.info("services_initialized", storage_backend=settings.STORAGE_BACKEND)

        set_app_info(version=settings.APP_VERSION, environment=settings.ENVIRONMENT)

        logger.info("application_ready", startup_time_seconds=time.time() - startup_start)

        yield

        logger.info("application_shutting_down")
        await http_client.aclose()
        await engine.dispose()
        logger.info("application_shutdown_complete")

    app = FastAPI(
        title=settings.APP_NAME,
        description="""
    Gateway in front of the image-enhancement inference API.

    - **POST /enhance**: submit a job, poll `GET /status/{id}` yourself
    - **POST /enhance/general**: wait for the result, stored and recorded
    - **GET /history**: your completed enhancements

    All endpoints except `/health` and `/metrics` require a Bearer token.
    Every route is also served under `/api/v1`.
    """,
        version=settings.APP_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json"
    )

    # =========================================================================
    # Middleware
    # =========================================================================
    app.add_middleware(GlobalExceptionMiddleware)

    @app.middleware("http")
    async def add_request_timing(request: Request, call_next):
        """Track request timing for metrics."""
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint
        ).observe(duration)

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code
        ).inc()

        response.headers["X-Process-Time"] = str(duration)
        return response

    register_exception_handlers(app)

    # =========================================================================
    # Routers
    # =========================================================================
    app.include_router(api_v1_router)
    app.include_router(api_v1_router, prefix="/api/v1")

    if settings.STORAGE_BACKEND.lower() == "local":
        storage_dir = Path(settings.LOCAL_STORAGE_PATH)
        storage_dir.mkdir(parents=True, exist_ok=True)
        app.mount("/static/storage", StaticFiles(directory=storage_dir), name="storage")

    @app.get("/health", tags=["health"])
    async def health():
        """Health check endpoint."""
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

    @app.get("/", tags=["root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "docs": "/api/docs",
            "api_v1": "/api/v1",
            "metrics": "/metrics"
        }

    return app


app = create_app()


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "opera_gateway.main:app",
        host="0.0.0.0",
        port=3002,
        reload=True,
        log_level="info"
    )
