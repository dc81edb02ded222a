"""Shared fixtures for storefront tests.

Provides an in-process payment gateway, recording order sinks and a
fully wired set of services over fresh in-memory stores.
"""

import asyncio
import hashlib
import hmac
import itertools
import json
import time
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Generator

import pytest
from fastapi.testclient import TestClient

from storefront.api import dependencies
from storefront.application.checkout_service import CheckoutService
from storefront.application.order_materializer import OrderMaterializer
from storefront.application.outbox import InMemoryOrderOutbox
from storefront.application.payment_service import PaymentService
from storefront.application.tracking_service import CheckoutTracker
from storefront.application.webhook_service import (
    InMemoryEventLog,
    WebhookService,
    WebhookSignatureVerifier,
)
from storefront.domain.entities import OrderRecord, PaymentIntent, PaymentIntentStatus
from storefront.domain.exceptions import GatewayError, SinkWriteError
from storefront.domain.value_objects import ProductRef, ShippingAddress
from storefront.infrastructure.cart_store import InMemoryCartStore
from storefront.infrastructure.session_store import InMemorySessionStore
from storefront.main import app

WEBHOOK_SECRET = "whsec_test_secret"
TEST_SESSION_ID = "sess-test"

BPC = ProductRef(
    id=1,
    name="BPC-157",
    price=Decimal("85.00"),
    weight_prices={"5mg": Decimal("85.00"), "10mg": Decimal("150.00")},
)
TB = ProductRef(id=2, name="TB-500", price=Decimal("60.00"))


# ============================================================================
# Test Doubles
# ============================================================================


class FakePaymentGateway:
    """In-memory stand-in for the Stripe gateway adapter."""

    def __init__(self) -> None:
        self.intents: dict[str, PaymentIntent] = {}
        self.created: list[PaymentIntent] = []
        self.updated: list[str] = []
        self.error: GatewayError | None = None
        self._ids = itertools.count(1)

    async def create_payment_intent(
        self,
        amount: int,
        metadata: dict[str, str],
        shipping: ShippingAddress | None = None,
        receipt_email: str | None = None,
        currency: str | None = None,
    ) -> PaymentIntent:
        if self.error is not None:
            raise self.error
        intent_id = f"pi_test_{next(self._ids)}"
        intent = PaymentIntent(
            id=intent_id,
            amount=amount,
            currency=currency or "usd",
            client_secret=f"{intent_id}_secret_abc",
            metadata=dict(metadata),
            shipping=shipping,
            receipt_email=receipt_email,
        )
        self.intents[intent_id] = intent
        self.created.append(intent)
        return intent

    async def update_payment_intent(
        self,
        intent_id: str,
        amount: int | None = None,
        metadata: dict[str, str] | None = None,
        shipping: ShippingAddress | None = None,
        receipt_email: str | None = None,
    ) -> PaymentIntent:
        if self.error is not None:
            raise self.error
        intent = self.intents[intent_id]
        changes: dict[str, Any] = {}
        if amount is not None:
            changes["amount"] = amount
        if metadata is not None:
            changes["metadata"] = dict(metadata)
        if shipping is not None:
            changes["shipping"] = shipping
        if receipt_email:
            changes["receipt_email"] = receipt_email
        intent = replace(intent, **changes)
        self.intents[intent_id] = intent
        self.updated.append(intent_id)
        return intent

    async def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        if intent_id not in self.intents:
            raise GatewayError(
                f"No such payment_intent: '{intent_id}'",
                gateway_code="resource_missing",
                status_code=404,
            )
        return self.intents[intent_id]

    def set_status(self, intent_id: str, status: str) -> PaymentIntent:
        intent = replace(self.intents[intent_id], status=status)
        self.intents[intent_id] = intent
        return intent

    def succeed(self, intent_id: str) -> PaymentIntent:
        return self.set_status(intent_id, PaymentIntentStatus.SUCCEEDED.value)

    def add(self, intent: PaymentIntent) -> PaymentIntent:
        self.intents[intent.id] = intent
        return intent


class RecordingSink:
    """Order sink that keeps written records in memory."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.records: list[OrderRecord] = []

    async def write(self, record: OrderRecord) -> str:
        self.records.append(record)
        return f"{self.name}-{len(self.records)}"

    async def find_order_id(self, payment_reference: str) -> str | None:
        for record in self.records:
            if record.payment_reference == payment_reference:
                return record.order_id
        return None

    async def stored_lines(self, records: list[OrderRecord]) -> dict[int, str]:
        reference = records[0].payment_reference if records else None
        return {
            record.line_number: f"{self.name}-{index}"
            for index, record in enumerate(self.records, start=1)
            if record.payment_reference == reference
        }


class FlakySink(RecordingSink):
    """Order sink that fails a number of writes before recovering."""

    def __init__(self, name: str, failures: int) -> None:
        super().__init__(name)
        self.failures = failures
        self.calls = 0

    async def write(self, record: OrderRecord) -> str:
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise SinkWriteError(self.name, "service unavailable", order_id=record.order_id)
        return await super().write(record)


@dataclass
class Harness:
    """Services wired over fresh in-memory stores."""

    session_store: InMemorySessionStore
    cart_store: InMemoryCartStore
    gateway: FakePaymentGateway
    outbox: InMemoryOrderOutbox
    database_sink: RecordingSink
    airtable_sink: RecordingSink
    materializer: OrderMaterializer
    tracker: CheckoutTracker
    payment_service: PaymentService
    checkout_service: CheckoutService
    event_log: InMemoryEventLog
    webhook_service: WebhookService


def build_harness(
    database_sink: RecordingSink | None = None,
    airtable_sink: RecordingSink | None = None,
    webhook_secret: str = WEBHOOK_SECRET,
) -> Harness:
    """Wire services the way the application does, with test doubles."""
    session_store = InMemorySessionStore()
    cart_store = InMemoryCartStore()
    gateway = FakePaymentGateway()
    outbox = InMemoryOrderOutbox()
    database_sink = database_sink or RecordingSink("database")
    airtable_sink = airtable_sink or RecordingSink("airtable")
    materializer = OrderMaterializer(
        outbox=outbox,
        sinks=[database_sink, airtable_sink],
        cart_store=cart_store,
        write_attempts=3,
        retry_delay=0,
    )
    tracker = CheckoutTracker(None)
    payment_service = PaymentService(
        gateway=gateway,
        materializer=materializer,
        session_store=session_store,
        cart_store=cart_store,
        tracker=tracker,
    )
    checkout_service = CheckoutService(
        session_store=session_store,
        cart_store=cart_store,
        payment_service=payment_service,
        materializer=materializer,
        tracker=tracker,
    )
    event_log = InMemoryEventLog()
    webhook_service = WebhookService(
        payment_service=payment_service,
        event_log=event_log,
        signature_verifier=WebhookSignatureVerifier(secret=webhook_secret, tolerance=300),
    )
    return Harness(
        session_store=session_store,
        cart_store=cart_store,
        gateway=gateway,
        outbox=outbox,
        database_sink=database_sink,
        airtable_sink=airtable_sink,
        materializer=materializer,
        tracker=tracker,
        payment_service=payment_service,
        checkout_service=checkout_service,
        event_log=event_log,
        webhook_service=webhook_service,
    )


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def harness() -> Harness:
    """Fresh services and stores."""
    return build_harness()


@pytest.fixture
def client(harness: Harness) -> Generator[TestClient, None, None]:
    """Test client whose dependencies resolve to the harness services.

    Every request runs as session ``TEST_SESSION_ID``.
    """
    app.dependency_overrides[dependencies.get_session_id] = lambda: TEST_SESSION_ID
    app.dependency_overrides[dependencies.checkout_service] = lambda: harness.checkout_service
    app.dependency_overrides[dependencies.payment_service] = lambda: harness.payment_service
    app.dependency_overrides[dependencies.webhook_service] = lambda: harness.webhook_service
    app.dependency_overrides[dependencies.order_materializer] = lambda: harness.materializer
    yield TestClient(app)
    app.dependency_overrides.clear()


def seed_cart(harness: Harness, session_id: str, *lines: tuple[ProductRef, int, str | None]) -> None:
    """Add (product, quantity, weight) lines to a session cart."""

    async def _seed() -> None:
        for product, quantity, weight in lines:
            await harness.cart_store.add_item(session_id, product, quantity, weight)

    asyncio.run(_seed())


@pytest.fixture
def seed():
    """Cart seeding helper for synchronous tests."""
    return seed_cart


@pytest.fixture
def make_harness():
    """Factory for harnesses with custom sinks or webhook secret."""
    return build_harness


@pytest.fixture
def flaky_sink():
    """Factory for sinks that fail a given number of writes."""
    return FlakySink


@pytest.fixture
def bpc() -> ProductRef:
    """Product with per-weight prices."""
    return BPC


@pytest.fixture
def tb() -> ProductRef:
    """Product with a single price."""
    return TB


@pytest.fixture
def webhook_secret() -> str:
    """Webhook signing secret used by the harness."""
    return WEBHOOK_SECRET


class WebhookFactory:
    """Builds signed Stripe webhook bodies."""

    def __init__(self, secret: str = WEBHOOK_SECRET) -> None:
        self.secret = secret
        self._ids = itertools.count(1)

    def sign(self, payload: bytes, secret: str | None = None, timestamp: int | None = None) -> str:
        """Stripe-Signature header value for a body."""
        timestamp = int(time.time()) if timestamp is None else timestamp
        signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
        digest = hmac.new((secret or self.secret).encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    def event(self, event_type: str, data_object: dict[str, Any], event_id: str | None = None) -> bytes:
        """Serialized event body."""
        return json.dumps(
            {
                "id": event_id or f"evt_test_{next(self._ids)}",
                "object": "event",
                "type": event_type,
                "created": int(time.time()),
                "data": {"object": data_object},
            }
        ).encode("utf-8")

    @staticmethod
    def intent_object(intent: PaymentIntent) -> dict[str, Any]:
        """Gateway JSON form of an intent."""
        obj: dict[str, Any] = {
            "id": intent.id,
            "object": "payment_intent",
            "amount": intent.amount,
            "currency": intent.currency,
            "status": intent.status,
            "metadata": dict(intent.metadata),
            "payment_method_types": list(intent.payment_method_types),
            "receipt_email": intent.receipt_email,
        }
        if intent.shipping is not None:
            obj["shipping"] = intent.shipping.to_payload()
        return obj


@pytest.fixture
def webhooks() -> WebhookFactory:
    """Signed webhook body builder."""
    return WebhookFactory()


@pytest.fixture
def session_id() -> str:
    """Session id every ``client`` request runs as."""
    return TEST_SESSION_ID
