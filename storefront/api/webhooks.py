"""Webhook receiver endpoints.

Provides:
- POST /api/webhook - receive Stripe events
- Stripe-Signature verification against the raw body
- Deduplication by event id

Verified events are always acknowledged with 200; processing failures
are logged and reported in the body so the gateway does not retry
events that can never succeed.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Header, Request

from storefront.api.dependencies import webhook_service
from storefront.api.schemas import ErrorResponse, WebhookResponse
from storefront.application.webhook_service import WebhookService

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["Webhooks"])


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Receive Stripe webhook",
    description="Receive and process Stripe events with signature verification.",
)
async def receive_stripe_webhook(
    request: Request,
    service: Annotated[WebhookService, Depends(webhook_service)],
    stripe_signature: Annotated[str | None, Header()] = None,
) -> WebhookResponse:
    """Receive and process a Stripe event.

    Args:
        request: The incoming request (raw body is verified).
        service: Webhook service.
        stripe_signature: Stripe-Signature header.

    Returns:
        Acknowledgement with the processing status.

    Raises:
        SignatureError: If the signature is missing or invalid.
        ValidationError: If the body is not an event.
    """
    correlation_id = getattr(request.state, "request_id", None)
    payload = await request.body()

    result = await service.handle(payload, stripe_signature, correlation_id=correlation_id)

    if not result.success:
        logger.warning(
            "Webhook acknowledged with processing failure",
            event_id=result.event_id,
            message=result.message,
        )

    return WebhookResponse(
        status=result.status.value,
        event_id=result.event_id,
        message=result.message,
    )
