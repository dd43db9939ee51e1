"""
Global Exception Handling

Every error that reaches a client is rendered as ``{"error": <kind>, "message": <text>}``.
Stack traces are logged server-side only.
"""

import traceback
from typing import Optional, Dict, Any
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from opera_gateway.core.logging import get_logger, job_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class GatewayError(Exception):
    """Base exception for the enhancement gateway."""

    error = "internal_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
        job_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error is not None:
            self.error = error
        self.job_id = job_id or job_id_var.get()
        self.details = details or {}
        super().__init__(self.message)

    def to_response(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message}


class AuthError(GatewayError):
    """Missing, malformed or rejected bearer token."""

    error = "authentication_required"
    status_code = 401


class ValidationError(GatewayError):
    """Raised when input validation fails."""

    error = "validation_error"
    status_code = 400


class UpstreamError(GatewayError):
    """Raised when an external API answers with a non-success status or is unreachable."""

    error = "upstream_error"

    def __init__(
        self,
        message: str,
        service: str,
        upstream_status: Optional[int] = None,
        body: Optional[str] = None,
        **kwargs
    ):
        status_code = upstream_status if upstream_status and upstream_status >= 400 else 500
        super().__init__(message, status_code=status_code, **kwargs)
        self.service = service
        self.upstream_status = upstream_status
        self.body = body
        self.details["service"] = service
        self.details["upstream_status"] = upstream_status


class NotFoundError(GatewayError):
    """The upstream service does not know the requested job."""

    error = "not_found"
    status_code = 404


class JobFailedError(GatewayError):
    """The upstream job reached the failed state."""

    error = "job_failed"
    status_code = 500


class JobTimeoutError(GatewayError):
    """The upstream job did not reach a terminal state within the attempt budget."""

    error = "job_timeout"
    status_code = 500


class JobCancelledError(GatewayError):
    """The caller disconnected while the job was being awaited."""

    error = "client_closed_request"
    status_code = 499


class StorageError(GatewayError):
    """Raised when storage operations fail. Recovered by the archiver."""

    error = "storage_error"


class HistoryWriteError(GatewayError):
    """Raised when the processing history cannot be written. Recovered by the recorder."""

    error = "history_write_error"


# =============================================================================
# Exception Handler Middleware
# =============================================================================

class GlobalExceptionMiddleware(BaseHTTPMiddleware):
    """
    Global exception handler middleware.

    Catches anything the route-level handlers did not and returns a generic 500.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            logger.error(
                "unhandled_exception",
                error=str(exc),
                error_type=type(exc).__name__,
                path=str(request.url.path),
                job_id=job_id_var.get(),
                traceback=traceback.format_exc()
            )
            return JSONResponse(
                status_code=500,
                content={"error": "internal_error", "message": "Internal server error"}
            )


def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid value")
    return f"{location}: {message}" if location else message


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(GatewayError)
    async def gateway_exception_handler(request: Request, exc: GatewayError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "gateway_exception",
            error=exc.error,
            message=exc.message,
            code=exc.status_code,
            job_id=exc.job_id,
            details=exc.details,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        message = _first_validation_message(exc)
        logger.warning("request_validation_failed", message=message, path=str(request.url.path))
        return JSONResponse(
            status_code=400,
            content={"error": "validation_error", "message": message}
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "http_error", "message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )
