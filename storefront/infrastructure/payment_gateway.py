"""Stripe payment gateway adapter.

Provides:
- StripePaymentGateway: create / update / retrieve payment intents
- verify_webhook_payload: signature check and parsing of webhook bodies

The Stripe SDK is synchronous; calls run in a worker thread so request
coroutines never block the event loop.
"""

import asyncio
import json
from typing import Any, Callable

import stripe
import structlog

from storefront.domain.entities import PaymentIntent
from storefront.domain.exceptions import GatewayError, SignatureError, ValidationError
from storefront.domain.value_objects import ShippingAddress
from storefront.infrastructure.config import settings

logger = structlog.get_logger()


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert a Stripe object into a plain dict."""
    if type(obj) is dict:
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


class StripePaymentGateway:
    """Payment intent operations against the Stripe API."""

    def __init__(
        self,
        secret_key: str | None = None,
        currency: str | None = None,
    ) -> None:
        """Initialize gateway.

        Args:
            secret_key: Stripe secret key (defaults to settings).
            currency: Default currency code (defaults to settings).
        """
        self.secret_key = secret_key if secret_key is not None else settings.stripe_secret_key
        self.currency = currency or settings.currency

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)

    async def _call(self, operation: str, fn: Callable[..., Any], *args: Any, **params: Any) -> PaymentIntent:
        if not self.is_configured:
            raise GatewayError("Payment gateway is not configured")

        try:
            result = await asyncio.to_thread(fn, *args, api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            logger.error(
                "Stripe request failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
                code=e.code,
            )
            raise GatewayError(
                e.user_message or "Payment gateway request failed",
                gateway_code=e.code,
                status_code=e.http_status,
            ) from e

        intent = PaymentIntent.from_payload(_to_dict(result))
        logger.debug(
            "Stripe request succeeded",
            operation=operation,
            payment_intent_id=intent.id,
            status=intent.status,
        )
        return intent

    async def create_payment_intent(
        self,
        amount: int,
        metadata: dict[str, str],
        shipping: ShippingAddress | None = None,
        receipt_email: str | None = None,
        currency: str | None = None,
    ) -> PaymentIntent:
        """Create a card payment intent.

        Args:
            amount: Amount in minor units.
            metadata: String metadata (values at most 500 chars).
            shipping: Shipping block.
            receipt_email: Receipt recipient.
            currency: Currency override.

        Returns:
            Created intent including its client secret.

        Raises:
            GatewayError: If Stripe rejects the request.
        """
        params: dict[str, Any] = {
            "amount": amount,
            "currency": currency or self.currency,
            "payment_method_types": ["card"],
            "metadata": metadata,
        }
        if shipping is not None:
            params["shipping"] = shipping.to_payload()
        if receipt_email:
            params["receipt_email"] = receipt_email
        return await self._call("create", stripe.PaymentIntent.create, **params)

    async def update_payment_intent(
        self,
        intent_id: str,
        amount: int | None = None,
        metadata: dict[str, str] | None = None,
        shipping: ShippingAddress | None = None,
        receipt_email: str | None = None,
    ) -> PaymentIntent:
        """Update an intent that has not been confirmed yet."""
        params: dict[str, Any] = {}
        if amount is not None:
            params["amount"] = amount
        if metadata is not None:
            params["metadata"] = metadata
        if shipping is not None:
            params["shipping"] = shipping.to_payload()
        if receipt_email:
            params["receipt_email"] = receipt_email
        return await self._call("modify", stripe.PaymentIntent.modify, intent_id, **params)

    async def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        """Fetch the current state of an intent."""
        return await self._call("retrieve", stripe.PaymentIntent.retrieve, intent_id)


# ============================================================================
# Webhook Verification
# ============================================================================


def verify_webhook_payload(
    payload: bytes,
    signature_header: str | None,
    secret: str | None,
    tolerance: int | None = None,
) -> dict[str, Any]:
    """Verify and parse a Stripe webhook body.

    When no secret is configured the body is parsed unverified and a
    warning is logged.

    Args:
        payload: Raw request body.
        signature_header: Value of the Stripe-Signature header.
        secret: Webhook signing secret.
        tolerance: Maximum age of the signature timestamp, in seconds.

    Returns:
        The event as a dict.

    Raises:
        SignatureError: If the signature is missing or invalid.
        ValidationError: If the body is not a JSON event.
    """
    text = payload.decode("utf-8", errors="replace")

    if secret:
        if not signature_header:
            logger.warning("Missing webhook signature")
            raise SignatureError("Missing Stripe-Signature header")
        try:
            stripe.WebhookSignature.verify_header(
                text,
                signature_header,
                secret,
                tolerance if tolerance is not None else settings.stripe_webhook_tolerance,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("Webhook signature mismatch", error=str(e))
            raise SignatureError("Webhook signature verification failed") from e
    else:
        logger.warning("Webhook secret not configured; accepting unverified event")

    try:
        event = json.loads(text)
    except ValueError as e:
        raise ValidationError("Webhook payload is not valid JSON") from e

    if not isinstance(event, dict) or "type" not in event:
        raise ValidationError("Webhook payload is not an event")
    return event


# Global gateway instance
_payment_gateway: StripePaymentGateway | None = None


def get_payment_gateway() -> StripePaymentGateway:
    """Get the payment gateway singleton.

    Returns:
        StripePaymentGateway instance.
    """
    global _payment_gateway
    if _payment_gateway is None:
        _payment_gateway = StripePaymentGateway()
    return _payment_gateway
