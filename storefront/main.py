"""Storefront checkout API application.

Wires structlog, the middleware stack, the routers and the error
handlers that render every failure as the standard error body.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from storefront.api.admin import router as admin_router
from storefront.api.cart import router as cart_router
from storefront.api.checkout import router as checkout_router
from storefront.api.health import router as health_router
from storefront.api.middleware import error_response, request_id_of, setup_middleware
from storefront.api.orders import router as orders_router
from storefront.api.payments import router as payments_router
from storefront.api.webhooks import router as webhooks_router
from storefront.domain.exceptions import (
    DomainError,
    GatewayError,
    PreconditionError,
    SignatureError,
    ValidationError,
)
from storefront.infrastructure.airtable_client import close_airtable_client
from storefront.infrastructure.config import settings
from storefront.infrastructure.database import create_tables, dispose_engine


def configure_logging() -> None:
    """Configure stdlib logging and structlog for JSON output."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(message)s",
        stream=sys.stdout,
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


configure_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create tables when configured; release clients and the engine on shutdown."""
    logger.info(
        "Starting storefront checkout API",
        version=settings.api_version,
        debug=settings.debug,
        stripe_configured=bool(settings.stripe_secret_key),
        airtable_configured=bool(settings.airtable_api_key and settings.airtable_base_id),
        webhook_verification=bool(settings.stripe_webhook_secret),
    )

    if settings.database_create_tables:
        await create_tables()
        logger.info("Database tables created")

    yield

    logger.info("Shutting down storefront checkout API")
    await close_airtable_client()
    await dispose_engine()


app = FastAPI(
    title="Storefront Checkout API",
    description="Session checkout, Stripe payments and order recording",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Storefront origins; the session cookie requires credentialed CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_middleware(app)

app.include_router(health_router, tags=["Health"])
app.include_router(checkout_router)
app.include_router(payments_router)
app.include_router(webhooks_router)
app.include_router(cart_router)
app.include_router(admin_router)
app.include_router(orders_router)


# ============================================================================
# Error Rendering
# ============================================================================


_DOMAIN_ERROR_STATUS: dict[type[DomainError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    PreconditionError: status.HTTP_400_BAD_REQUEST,
    SignatureError: status.HTTP_400_BAD_REQUEST,
    GatewayError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def domain_error_status(exc: DomainError) -> int:
    """HTTP status for a domain error, by nearest mapped base class."""
    for cls in type(exc).__mro__:
        if cls in _DOMAIN_ERROR_STATUS:
            return _DOMAIN_ERROR_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    """Map domain errors to the standard error body."""
    status_code = domain_error_status(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "Request rejected",
        error_code=exc.error_code,
        message=exc.message,
        path=request.url.path,
        status_code=status_code,
    )
    return error_response(
        status_code,
        exc.error_code,
        exc.message,
        details=exc.details,
        request_id=request_id_of(request),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies as validation errors."""
    errors = [{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()]
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "VALIDATION_ERROR",
        "Request body is not valid",
        details={"errors": errors},
        request_id=request_id_of(request),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Render HTTP exceptions; dict details may carry error_code and message."""
    detail = exc.detail if isinstance(exc.detail, dict) else {"message": str(exc.detail)}
    return error_response(
        exc.status_code,
        detail.get("error_code", "ERROR"),
        detail.get("message", ""),
        details=detail.get("details"),
        request_id=request_id_of(request),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Last-resort handler for exceptions raised inside route handlers."""
    logger.exception(
        "Route handler failed",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        "An internal error occurred",
        request_id=request_id_of(request),
    )
