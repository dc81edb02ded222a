"""API middleware for the storefront checkout service.

Provides:
- Request ID correlation and access logging
- Signed cookie sessions
- Admin API key authentication
- Last-resort error handling
"""

import secrets
import time
from typing import Any, Callable
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.sessions import SessionMiddleware

from storefront.infrastructure.config import settings

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"
ADMIN_PATH_PREFIX = "/api/admin"
QUIET_PATHS = frozenset({"/health", "/ready"})
_MAX_REQUEST_ID_LENGTH = 128


def error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Any = None,
    request_id: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Standard error body shared by middleware and exception handlers."""
    content: dict[str, Any] = {
        "error_code": error_code,
        "message": message,
        "details": details if details is not None else {},
        "request_id": request_id,
    }
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def request_id_of(request: Request) -> str | None:
    """Correlation id assigned to the request, if any."""
    return getattr(request.state, "request_id", None)


# ============================================================================
# Request Correlation
# ============================================================================


def _incoming_request_id(request: Request) -> str:
    candidate = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    if candidate and len(candidate) <= _MAX_REQUEST_ID_LENGTH:
        return candidate
    return str(uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag every request with a correlation id and log its outcome.

    The id is taken from ``X-Request-ID`` when the caller sends a usable
    one, bound to the structlog context for the duration of the request,
    stored on ``request.state`` and echoed on the response. Health probes
    are logged at debug level.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = _incoming_request_id(request)
        request.state.request_id = request_id

        started = time.perf_counter()
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        with structlog.contextvars.bound_contextvars(request_id=request_id):
            try:
                response = await call_next(request)
                status_code = response.status_code
            finally:
                log = logger.debug if request.url.path in QUIET_PATHS else logger.info
                log(
                    "HTTP request",
                    method=request.method,
                    path=request.url.path,
                    status_code=status_code,
                    elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
                )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


# ============================================================================
# Admin API Key
# ============================================================================


def _admin_auth_failure(authorization: str | None) -> tuple[str, str] | None:
    """Error code and message for a rejected admin request, or None if allowed."""
    if not settings.admin_api_key:
        return "UNAUTHORIZED", "Admin API is disabled"
    if not authorization:
        return "UNAUTHORIZED", "Missing Authorization header"

    scheme, _, key = authorization.partition(" ")
    if scheme.lower() != "bearer" or not key:
        return "UNAUTHORIZED", "Invalid Authorization header format. Use 'Bearer <api_key>'"
    if not secrets.compare_digest(key.encode(), settings.admin_api_key.encode()):
        return "INVALID_API_KEY", "Invalid API key"
    return None


class AdminApiKeyMiddleware(BaseHTTPMiddleware):
    """Bearer API key check for the operator endpoints.

    Storefront endpoints are session based and stay public; only paths
    under ``/api/admin`` require "Authorization: Bearer <admin_api_key>".
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not request.url.path.startswith(ADMIN_PATH_PREFIX):
            return await call_next(request)

        failure = _admin_auth_failure(request.headers.get("Authorization"))
        if failure is not None:
            error_code, message = failure
            logger.warning(
                "Admin request rejected",
                path=request.url.path,
                method=request.method,
                error_code=error_code,
                reason=message,
            )
            return error_response(
                status.HTTP_401_UNAUTHORIZED,
                error_code,
                message,
                request_id=request_id_of(request),
                headers={"WWW-Authenticate": "Bearer"},
            )

        request.state.authenticated = True
        return await call_next(request)


# ============================================================================
# Error Handling
# ============================================================================


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Turn exceptions that escaped every handler into a 500 error body."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            logger.exception(
                "Request failed",
                path=request.url.path,
                method=request.method,
                error=str(e),
            )
            return error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "INTERNAL_ERROR",
                "An internal error occurred",
                request_id=request_id_of(request),
            )


# ============================================================================
# Setup
# ============================================================================


def setup_middleware(app: FastAPI) -> None:
    """Install the storefront middleware stack.

    Starlette runs the most recently added middleware first, so the
    request id is assigned before the session cookie is read and before
    admin authentication.

    Args:
        app: FastAPI application instance.
    """
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(AdminApiKeyMiddleware)
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=settings.session_cookie_name,
        max_age=settings.session_max_age_seconds,
        same_site="lax",
        https_only=settings.session_https_only,
    )
    app.add_middleware(RequestIdMiddleware)
