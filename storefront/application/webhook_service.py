"""Webhook processing service.

Handles incoming Stripe webhooks with:
- Signature verification
- Redelivery detection by event id
- Routing of payment events to order materialization

Processing failures are recorded and reported but never raised, so the
gateway always receives an acknowledgement.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from storefront.application.payment_service import PaymentService, get_payment_service
from storefront.domain.entities import PaymentIntent
from storefront.infrastructure.config import settings
from storefront.infrastructure.payment_gateway import verify_webhook_payload

logger = structlog.get_logger()


class StripeEventType(str, Enum):
    """Stripe event types the receiver acts on."""

    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    CHARGE_SUCCEEDED = "charge.succeeded"


class EventStatus(str, Enum):
    """Status of a webhook event in the event log."""

    RECEIVED = "received"
    PROCESSING = "processing"
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"
    DUPLICATE = "duplicate"


@dataclass
class WebhookEvent:
    """A verified gateway event.

    Attributes:
        event_id: Gateway event identifier.
        event_type: Event type string (e.g. payment_intent.succeeded).
        data_object: The ``data.object`` of the event.
        created: Event creation time, if given.
        raw: The full event payload.
    """

    event_id: str
    event_type: str
    data_object: dict[str, Any]
    created: datetime | None = None
    raw: dict[str, Any] | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "WebhookEvent":
        """Create from a parsed event body."""
        created = payload.get("created")
        data = payload.get("data") or {}
        event_id = payload.get("id")
        if not event_id:
            digest = hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()
            event_id = f"evt_local_{digest[:24]}"
        return cls(
            event_id=event_id,
            event_type=payload.get("type", ""),
            data_object=data.get("object") or {},
            created=(
                datetime.fromtimestamp(int(created), tz=timezone.utc)
                if created is not None
                else None
            ),
            raw=payload,
        )


@dataclass
class WebhookResult:
    """Result of webhook processing.

    Attributes:
        success: Whether processing succeeded.
        event_id: The event ID.
        status: Final event status.
        message: Status message.
        duplicate: Whether this was a redelivered event.
    """

    success: bool
    event_id: str
    status: EventStatus
    message: str
    duplicate: bool = False


class WebhookSignatureVerifier:
    """Verifies the Stripe-Signature header of webhook bodies."""

    def __init__(self, secret: str | None = None, tolerance: int | None = None) -> None:
        """Initialize verifier.

        Args:
            secret: Webhook signing secret; empty disables verification.
            tolerance: Maximum signature age in seconds.
        """
        self.secret = secret if secret is not None else settings.stripe_webhook_secret
        self.tolerance = tolerance if tolerance is not None else settings.stripe_webhook_tolerance

    def verify(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Verify and parse a webhook body.

        Raises:
            SignatureError: If the signature is missing or invalid.
            ValidationError: If the body is not an event.
        """
        return verify_webhook_payload(payload, signature, self.secret, self.tolerance)


class InMemoryEventLog:
    """In-memory event log keyed by event id."""

    def __init__(self) -> None:
        """Initialize event log."""
        self._events: dict[str, dict[str, Any]] = {}

    async def get(self, event_id: str) -> dict[str, Any] | None:
        """Get an event from the log."""
        return self._events.get(event_id)

    async def store(
        self,
        event: WebhookEvent,
        status: EventStatus,
        correlation_id: str | None = None,
    ) -> None:
        """Store an event in the log."""
        previous = self._events.get(event.event_id)
        self._events[event.event_id] = {
            "event_id": event.event_id,
            "event_type": event.event_type,
            "object_id": event.data_object.get("id"),
            "received_at": datetime.now(timezone.utc),
            "processed_at": None,
            "status": status.value,
            "error_message": None,
            "correlation_id": correlation_id,
            "deliveries": (previous["deliveries"] + 1) if previous else 1,
        }

    async def update_status(
        self,
        event_id: str,
        status: EventStatus,
        error_message: str | None = None,
    ) -> None:
        """Update event status."""
        if event_id in self._events:
            self._events[event_id]["status"] = status.value
            if status in (EventStatus.PROCESSED, EventStatus.IGNORED):
                self._events[event_id]["processed_at"] = datetime.now(timezone.utc)
            if error_message:
                self._events[event_id]["error_message"] = error_message


_SETTLED = {EventStatus.PROCESSED.value, EventStatus.IGNORED.value, EventStatus.PROCESSING.value}


class WebhookService:
    """Service for processing incoming Stripe webhooks."""

    def __init__(
        self,
        payment_service: PaymentService,
        event_log: InMemoryEventLog | None = None,
        signature_verifier: WebhookSignatureVerifier | None = None,
    ) -> None:
        """Initialize webhook service.

        Args:
            payment_service: Completes paid intents.
            event_log: Event log for redelivery detection.
            signature_verifier: Signature verifier.
        """
        self.payment_service = payment_service
        self.event_log = event_log or InMemoryEventLog()
        self.signature_verifier = signature_verifier or WebhookSignatureVerifier()

    async def handle(
        self,
        payload: bytes,
        signature: str | None,
        correlation_id: str | None = None,
    ) -> WebhookResult:
        """Verify a raw webhook body and process the event.

        Raises:
            SignatureError: If the signature does not verify.
            ValidationError: If the body is not an event.
        """
        body = self.signature_verifier.verify(payload, signature)
        return await self.process_event(WebhookEvent.from_payload(body), correlation_id)

    async def process_event(
        self,
        event: WebhookEvent,
        correlation_id: str | None = None,
    ) -> WebhookResult:
        """Process a verified event.

        Args:
            event: The webhook event to process.
            correlation_id: Request correlation ID.

        Returns:
            Processing result; failures are reported, not raised.
        """
        logger.info(
            "Processing webhook event",
            event_id=event.event_id,
            event_type=event.event_type,
            correlation_id=correlation_id,
        )

        previous = await self.event_log.get(event.event_id)
        if previous is not None and previous["status"] in _SETTLED:
            logger.info(
                "Duplicate webhook event ignored",
                event_id=event.event_id,
                previous_status=previous["status"],
            )
            return WebhookResult(
                success=True,
                event_id=event.event_id,
                status=EventStatus.DUPLICATE,
                message="Event already processed",
                duplicate=True,
            )

        await self.event_log.store(event, EventStatus.PROCESSING, correlation_id=correlation_id)

        try:
            status, message = await self._handle_event(event)
        except Exception as e:
            error_message = str(e)
            logger.exception(
                "Failed to process webhook event",
                event_id=event.event_id,
                event_type=event.event_type,
                error=error_message,
            )
            await self.event_log.update_status(
                event.event_id, EventStatus.FAILED, error_message=error_message
            )
            return WebhookResult(
                success=False,
                event_id=event.event_id,
                status=EventStatus.FAILED,
                message=error_message,
            )

        await self.event_log.update_status(event.event_id, status)
        logger.info(
            "Webhook event handled",
            event_id=event.event_id,
            event_type=event.event_type,
            status=status.value,
        )
        return WebhookResult(
            success=True,
            event_id=event.event_id,
            status=status,
            message=message,
        )

    async def _handle_event(self, event: WebhookEvent) -> tuple[EventStatus, str]:
        """Route an event to its handler."""
        handlers = {
            StripeEventType.PAYMENT_INTENT_SUCCEEDED.value: self._handle_payment_intent_succeeded,
            StripeEventType.CHARGE_SUCCEEDED.value: self._handle_charge_succeeded,
            StripeEventType.PAYMENT_INTENT_FAILED.value: self._handle_payment_failed,
        }
        handler = handlers.get(event.event_type)
        if handler is None:
            logger.debug("No handler for event type", event_type=event.event_type)
            return EventStatus.IGNORED, f"Unhandled event type {event.event_type}"
        return await handler(event)

    async def _complete(self, intent: PaymentIntent) -> tuple[EventStatus, str]:
        if not intent.succeeded:
            logger.warning(
                "Success event for unpaid intent",
                payment_intent_id=intent.id,
                status=intent.status,
            )
            return EventStatus.IGNORED, f"Payment intent status is {intent.status}"
        completion = await self.payment_service.complete_payment(intent, source="webhook")
        if completion.duplicate:
            return EventStatus.PROCESSED, f"Order {completion.order_id} already recorded"
        return EventStatus.PROCESSED, f"Order {completion.order_id} recorded"

    async def _handle_payment_intent_succeeded(self, event: WebhookEvent) -> tuple[EventStatus, str]:
        """Handle payment_intent.succeeded."""
        return await self._complete(PaymentIntent.from_payload(event.data_object))

    async def _handle_charge_succeeded(self, event: WebhookEvent) -> tuple[EventStatus, str]:
        """Handle charge.succeeded by resolving the parent intent."""
        payment_intent_id = event.data_object.get("payment_intent")
        if not payment_intent_id:
            logger.info("Charge without payment intent", charge_id=event.data_object.get("id"))
            return EventStatus.IGNORED, "Charge has no payment intent"
        intent = await self.payment_service.payment_status(payment_intent_id)
        return await self._complete(intent)

    async def _handle_payment_failed(self, event: WebhookEvent) -> tuple[EventStatus, str]:
        """Handle payment_intent.payment_failed (logged only)."""
        error = event.data_object.get("last_payment_error") or {}
        logger.warning(
            "Payment failed",
            payment_intent_id=event.data_object.get("id"),
            error=error.get("message"),
            code=error.get("code"),
        )
        return EventStatus.PROCESSED, "Payment failure recorded"


# Global service instance
_webhook_service: WebhookService | None = None


def get_webhook_service() -> WebhookService:
    """Get or create the webhook service instance.

    Returns:
        WebhookService instance.
    """
    global _webhook_service
    if _webhook_service is None:
        _webhook_service = WebhookService(payment_service=get_payment_service())
    return _webhook_service
