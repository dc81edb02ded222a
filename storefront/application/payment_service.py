"""Payment application service.

Handles the card payment lifecycle:
- Creating or updating the gateway intent for a checkout
- Reporting intent status
- Completing a paid intent (shared by the client success call and webhooks)
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import structlog

from storefront.application.order_materializer import (
    MaterializationResult,
    OrderMaterializer,
    get_order_materializer,
)
from storefront.application.tracking_service import CheckoutTracker, get_checkout_tracker
from storefront.domain.entities import CheckoutSession, PaymentIntent
from storefront.domain.exceptions import GatewayError, ValidationError
from storefront.domain.order_summary import METADATA_VALUE_LIMIT, SummaryItem, build_order_summary
from storefront.domain.state_machines import CheckoutStep
from storefront.domain.value_objects import (
    CartItem,
    CustomerInfo,
    ShippingAddress,
    compute_cart_totals,
    quantize_money,
    to_minor_units,
)
from storefront.infrastructure.cart_store import InMemoryCartStore, get_cart_store
from storefront.infrastructure.config import settings
from storefront.infrastructure.payment_gateway import StripePaymentGateway, get_payment_gateway
from storefront.infrastructure.session_store import InMemorySessionStore, get_session_store

logger = structlog.get_logger()

DEFAULT_SHIPPING_METHOD = "standard"
_COMPLETION_ATTEMPTS = 3


@dataclass
class PaymentHandle:
    """Client-facing handle of a gateway intent."""

    payment_intent_id: str
    client_secret: str | None
    amount_cents: int
    created: bool


@dataclass
class CreatedPaymentIntent:
    """Result of the direct create-payment-intent call."""

    handle: PaymentHandle
    amount: Decimal
    item_count: int


@dataclass
class PaymentCompletion:
    """Outcome of recording a payment as successful."""

    success: bool
    status: str
    payment_intent_id: str
    order_id: str | None = None
    duplicate: bool = False
    record_count: int = 0
    message: str | None = None


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def build_intent_metadata(
    session_id: str,
    checkout_id: str | None,
    customer: CustomerInfo,
    items: list[CartItem],
    shipping_method: str | None,
    affiliate_code: str | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, str]:
    """Build the metadata attached to a payment intent.

    Caller-supplied keys are kept unless they collide with the keys the
    materializer relies on. Every value is a string of at most 500 chars.
    """
    summary = build_order_summary(
        customer.full_name,
        customer.email,
        [
            SummaryItem(
                id=str(item.product_id),
                name=item.product.name,
                qty=item.quantity,
                weight=item.selected_weight,
            )
            for item in items
        ],
    )
    metadata = {str(k)[:40]: str(v)[:METADATA_VALUE_LIMIT] for k, v in (extra or {}).items()}
    metadata.update(
        {
            "session_id": session_id,
            "checkout_id": checkout_id or "",
            "orderSummary": summary,
            "customer_name": customer.full_name,
            "customer_email": customer.email or "",
            "customer_phone": customer.phone or "",
            "shipping_method": shipping_method or DEFAULT_SHIPPING_METHOD,
        }
    )
    if affiliate_code:
        metadata["affiliate_code"] = affiliate_code[:METADATA_VALUE_LIMIT]
    return metadata


def shipping_address_for(customer: CustomerInfo) -> ShippingAddress:
    """Shipping block of an intent for a customer."""
    return ShippingAddress(
        name=customer.full_name,
        line1=customer.address,
        city=customer.city,
        state=customer.state,
        postal_code=customer.zip,
        phone=customer.phone,
    )


class PaymentService:
    """Service for gateway payment intents and their completion."""

    def __init__(
        self,
        gateway: StripePaymentGateway,
        materializer: OrderMaterializer,
        session_store: InMemorySessionStore,
        cart_store: InMemoryCartStore,
        tracker: CheckoutTracker,
        request_id: str | None = None,
    ) -> None:
        """Initialize payment service.

        Args:
            gateway: Payment gateway adapter.
            materializer: Order materializer.
            session_store: Checkout session store.
            cart_store: Cart collaborator.
            tracker: Checkout tracking sink.
            request_id: Request ID for correlation.
        """
        self.gateway = gateway
        self.materializer = materializer
        self.session_store = session_store
        self.cart_store = cart_store
        self.tracker = tracker
        self.request_id = request_id

    async def upsert_intent(
        self,
        session: CheckoutSession,
        amount_cents: int,
        customer: CustomerInfo,
        items: list[CartItem],
        shipping_method: str | None,
        affiliate_code: str | None = None,
        extra_metadata: dict[str, Any] | None = None,
    ) -> PaymentHandle:
        """Create an intent, or update the session's intent while it is still open.

        Args:
            session: Session the intent belongs to.
            amount_cents: Amount in minor units.
            customer: Customer details for metadata and shipping.
            items: Cart lines for the order summary.
            shipping_method: Chosen shipping method.
            affiliate_code: Referral code.
            extra_metadata: Additional metadata from the client.

        Returns:
            Handle with the client secret.

        Raises:
            GatewayError: If the gateway call fails.
        """
        metadata = build_intent_metadata(
            session.session_id,
            session.checkout_id,
            customer,
            items,
            shipping_method,
            affiliate_code=affiliate_code,
            extra=extra_metadata,
        )
        shipping = shipping_address_for(customer)

        if session.payment_intent_id:
            try:
                existing = await self.gateway.retrieve_payment_intent(session.payment_intent_id)
            except GatewayError as e:
                logger.warning(
                    "Existing payment intent unavailable; creating a new one",
                    payment_intent_id=session.payment_intent_id,
                    error=e.message,
                    request_id=self.request_id,
                )
                existing = None

            if existing is not None and existing.is_updatable:
                intent = await self.gateway.update_payment_intent(
                    existing.id,
                    amount=amount_cents,
                    metadata=metadata,
                    shipping=shipping,
                    receipt_email=customer.email,
                )
                logger.info(
                    "Payment intent updated",
                    payment_intent_id=intent.id,
                    amount=amount_cents,
                    session_id=session.session_id,
                    request_id=self.request_id,
                )
                return PaymentHandle(
                    payment_intent_id=intent.id,
                    client_secret=intent.client_secret or existing.client_secret,
                    amount_cents=amount_cents,
                    created=False,
                )

        intent = await self.gateway.create_payment_intent(
            amount=amount_cents,
            metadata=metadata,
            shipping=shipping,
            receipt_email=customer.email,
        )
        logger.info(
            "Payment intent created",
            payment_intent_id=intent.id,
            amount=amount_cents,
            session_id=session.session_id,
            checkout_id=session.checkout_id,
            request_id=self.request_id,
        )
        return PaymentHandle(
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            amount_cents=amount_cents,
            created=True,
        )

    async def create_payment_intent(
        self,
        session_id: str,
        amount: Decimal | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
        phone: str | None = None,
        address: str | None = None,
        city: str | None = None,
        state: str | None = None,
        zip: str | None = None,
        shipping_method: str | None = None,
        affiliate_code: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CreatedPaymentIntent:
        """Create an intent outside the step-by-step checkout.

        The amount defaults to the live cart total. Customer fields fall
        back to whatever the session's checkout collected.

        Raises:
            ValidationError: If the cart is empty (and no amount is given)
                or the customer name is missing.
            GatewayError: If the gateway call fails.
        """
        session = await self.session_store.get_or_create(session_id)
        items = await self.cart_store.get_cart_items(session_id)
        totals = compute_cart_totals(
            items,
            settings.shipping_flat_rate,
            settings.shipping_bulk_rate,
            settings.shipping_bulk_threshold,
        )

        if amount is not None and amount > 0:
            amount_major = quantize_money(amount)
        elif totals.is_empty:
            raise ValidationError("Cart is empty")
        else:
            amount_major = totals.total

        base = CustomerInfo.from_checkout(session.personal_info, session.shipping_info)
        personal = session.personal_info
        first = _clean(first_name) or (personal.first_name if personal else None)
        last = _clean(last_name) or (personal.last_name if personal else None)
        missing = [n for n, v in (("firstName", first), ("lastName", last)) if v is None]
        if missing:
            raise ValidationError(
                "Customer first and last name are required",
                missing_fields=missing,
            )

        customer = CustomerInfo(
            first_name=first,
            last_name=last,
            email=_clean(email) or base.email,
            phone=_clean(phone) or base.phone,
            address=_clean(address) or base.address,
            city=_clean(city) or base.city,
            state=_clean(state) or base.state,
            zip=_clean(zip) or base.zip,
        )
        method = _clean(shipping_method) or (
            session.shipping_info.shipping_method if session.shipping_info else None
        )

        handle = await self.upsert_intent(
            session,
            to_minor_units(amount_major),
            customer,
            items,
            method,
            affiliate_code=_clean(affiliate_code),
            extra_metadata=metadata,
        )
        await self._remember_intent(session_id, handle.payment_intent_id)
        return CreatedPaymentIntent(handle=handle, amount=amount_major, item_count=len(items))

    async def _remember_intent(self, session_id: str, payment_intent_id: str) -> None:
        for _ in range(_COMPLETION_ATTEMPTS):
            session = await self.session_store.get_or_create(session_id)
            if session.payment_intent_id == payment_intent_id:
                return
            stored = await self.session_store.compare_and_swap(
                session.copy(payment_intent_id=payment_intent_id), session.version
            )
            if stored is not None:
                return
        logger.warning(
            "Could not store payment intent on session",
            session_id=session_id,
            payment_intent_id=payment_intent_id,
        )

    async def payment_status(self, payment_intent_id: str) -> PaymentIntent:
        """Retrieve the current state of an intent."""
        return await self.gateway.retrieve_payment_intent(payment_intent_id)

    async def record_payment_success(
        self,
        payment_intent_id: str,
        session_id: str | None = None,
    ) -> PaymentCompletion:
        """Client-side completion signal after a card payment.

        The intent is re-read from the gateway; only a succeeded intent
        is materialized.
        """
        intent = await self.gateway.retrieve_payment_intent(payment_intent_id)
        if not intent.succeeded:
            logger.warning(
                "Payment success reported for unpaid intent",
                payment_intent_id=payment_intent_id,
                status=intent.status,
                request_id=self.request_id,
            )
            return PaymentCompletion(
                success=False,
                status=intent.status,
                payment_intent_id=intent.id,
                message=f"Payment is not successful. Status: {intent.status}",
            )
        return await self.complete_payment(intent, fallback_session_id=session_id, source="client")

    async def complete_payment(
        self,
        intent: PaymentIntent,
        fallback_session_id: str | None = None,
        source: str = "webhook",
    ) -> PaymentCompletion:
        """Materialize a paid intent and complete its checkout.

        Args:
            intent: Succeeded payment intent.
            fallback_session_id: Session to use when metadata has none.
            source: Which completion path delivered the signal.

        Returns:
            Completion outcome.
        """
        result: MaterializationResult = await self.materializer.materialize_payment(
            intent, session_id=fallback_session_id
        )
        session_id = intent.metadata.get("session_id") or fallback_session_id
        if session_id:
            await self.mark_checkout_completed(session_id, intent.id)

        logger.info(
            "Payment completed",
            payment_intent_id=intent.id,
            order_id=result.order_id,
            duplicate=result.duplicate,
            source=source,
            request_id=self.request_id,
        )
        return PaymentCompletion(
            success=True,
            status=intent.status,
            payment_intent_id=intent.id,
            order_id=result.order_id,
            duplicate=result.duplicate,
            record_count=result.record_count,
        )

    async def mark_checkout_completed(self, session_id: str, payment_intent_id: str) -> bool:
        """Move the session's checkout to completed after a card payment.

        Only a checkout at payment selection or processing whose intent
        matches is completed; anything else is left as is.

        Returns:
            True if this call completed the checkout.
        """
        for _ in range(_COMPLETION_ATTEMPTS):
            session = await self.session_store.get(session_id)
            if session is None or session.step is None or session.step.is_terminal():
                return False
            if session.payment_intent_id not in (None, payment_intent_id):
                logger.info(
                    "Session holds a different payment intent; checkout left open",
                    session_id=session_id,
                    payment_intent_id=payment_intent_id,
                )
                return False
            if not session.step.can_transition_to(CheckoutStep.COMPLETED):
                logger.info(
                    "Checkout not at a payable step; left open",
                    session_id=session_id,
                    step=session.step.value,
                )
                return False

            stored = await self.session_store.compare_and_swap(
                session.copy(step=CheckoutStep.COMPLETED), session.version
            )
            if stored is not None:
                logger.info(
                    "Checkout completed",
                    session_id=session_id,
                    checkout_id=stored.checkout_id,
                    payment_intent_id=payment_intent_id,
                )
                if stored.checkout_id:
                    await self.tracker.mark_completed(stored.checkout_id)
                return True

        logger.warning("Could not mark checkout completed", session_id=session_id)
        return False


def get_payment_service(request_id: str | None = None) -> PaymentService:
    """Get payment service instance.

    Args:
        request_id: Request ID for correlation.

    Returns:
        PaymentService instance.
    """
    return PaymentService(
        gateway=get_payment_gateway(),
        materializer=get_order_materializer(),
        session_store=get_session_store(),
        cart_store=get_cart_store(),
        tracker=get_checkout_tracker(),
        request_id=request_id,
    )
