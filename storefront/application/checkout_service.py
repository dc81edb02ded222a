"""Checkout application service.

Orchestrates the session-scoped checkout flow:
- Initializing a checkout for the session
- Collecting personal and shipping information
- Selecting a payment method (card intent or manual instructions)
- Confirming manual payments and materializing the order
- Explicit abandonment

Every session write is compare-and-swap on the session version, so a
step is only ever advanced from the state it was validated against.
"""

import json
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import structlog

from storefront.application.order_materializer import OrderMaterializer, get_order_materializer
from storefront.application.payment_service import PaymentService, get_payment_service
from storefront.application.tracking_service import CheckoutTracker, get_checkout_tracker
from storefront.domain.entities import CheckoutSession
from storefront.domain.exceptions import (
    ConcurrentModificationError,
    PreconditionError,
    ValidationError,
)
from storefront.domain.state_machines import CheckoutStep, validate_checkout_transition
from storefront.domain.value_objects import (
    CartItem,
    CartTotals,
    CustomerInfo,
    PaymentMethod,
    PersonalInfo,
    ShippingInfo,
    compute_cart_totals,
    generate_checkout_id,
)
from storefront.infrastructure.cart_store import InMemoryCartStore, get_cart_store
from storefront.infrastructure.config import settings
from storefront.infrastructure.session_store import InMemorySessionStore, get_session_store

logger = structlog.get_logger()

_COMPLETION_ATTEMPTS = 3


# ============================================================================
# Results
# ============================================================================


@dataclass
class CheckoutResult:
    """Outcome of a checkout step."""

    checkout_id: str
    step: CheckoutStep
    next_step: str | None
    cart_item_count: int = 0
    cart_total: Decimal | None = None
    created: bool = False


@dataclass
class PaymentSelection:
    """Outcome of selecting a payment method."""

    payment_method: PaymentMethod
    amount: Decimal
    next_step: str
    client_secret: str | None = None
    payment_intent_id: str | None = None
    bank_info: dict[str, Any] | None = None
    crypto_info: dict[str, Any] | None = None


@dataclass
class ManualConfirmation:
    """Outcome of confirming a bank or crypto payment."""

    payment_method: PaymentMethod
    order_id: str
    payment_reference: str
    record_count: int
    duplicate: bool = False
    message: str = ""


@dataclass
class CheckoutState:
    """Snapshot of the session's checkout."""

    session: CheckoutSession
    totals: CartTotals
    items: list[CartItem] = field(default_factory=list)


def bank_instructions(reference: str | None, amount: Decimal) -> dict[str, Any]:
    """Bank transfer instructions shown to the customer."""
    return {
        "accountName": settings.bank_account_name,
        "bankName": settings.bank_name,
        "accountNumber": settings.bank_account_number,
        "routingNumber": settings.bank_routing_number,
        "reference": reference,
        "amount": float(amount),
    }


def crypto_instructions(reference: str | None, amount: Decimal) -> dict[str, Any]:
    """Crypto wallet instructions shown to the customer."""
    return {
        "bitcoin": settings.crypto_bitcoin_address,
        "ethereum": settings.crypto_ethereum_address,
        "reference": reference,
        "amount": float(amount),
    }


class CheckoutService:
    """Service for the step-by-step checkout of one session."""

    def __init__(
        self,
        session_store: InMemorySessionStore,
        cart_store: InMemoryCartStore,
        payment_service: PaymentService,
        materializer: OrderMaterializer,
        tracker: CheckoutTracker,
        request_id: str | None = None,
    ) -> None:
        """Initialize checkout service.

        Args:
            session_store: Checkout session store.
            cart_store: Cart collaborator.
            payment_service: Card payment intents.
            materializer: Order materializer for manual payments.
            tracker: Checkout tracking sink.
            request_id: Request ID for correlation.
        """
        self.session_store = session_store
        self.cart_store = cart_store
        self.payment_service = payment_service
        self.materializer = materializer
        self.tracker = tracker
        self.request_id = request_id

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _cart(self, session_id: str) -> tuple[list[CartItem], CartTotals]:
        items = await self.cart_store.get_cart_items(session_id)
        totals = compute_cart_totals(
            items,
            settings.shipping_flat_rate,
            settings.shipping_bulk_rate,
            settings.shipping_bulk_threshold,
        )
        return items, totals

    async def cart_totals(self, session_id: str) -> CartTotals:
        """Live totals of the session's cart."""
        _, totals = await self._cart(session_id)
        return totals

    async def _write(self, read: CheckoutSession, updated: CheckoutSession) -> CheckoutSession:
        stored = await self.session_store.compare_and_swap(updated, read.version)
        if stored is None:
            raise ConcurrentModificationError(read.session_id, read.version)
        return stored

    async def _ensure_checkout(self, session: CheckoutSession) -> CheckoutSession:
        if session.has_active_checkout:
            return session
        checkout_id = generate_checkout_id()
        stored = await self._write(session, session.restart(checkout_id))
        logger.info(
            "Checkout initialized",
            checkout_id=checkout_id,
            session_id=session.session_id,
            request_id=self.request_id,
        )
        await self.tracker.start(checkout_id, session.session_id)
        return stored

    @staticmethod
    def _require_personal_info(session: CheckoutSession) -> None:
        if not session.has_active_checkout or session.personal_info is None:
            raise PreconditionError(
                "Personal information must be provided first",
                resume_step=CheckoutStep.PERSONAL_INFO.value,
            )

    @staticmethod
    def _require_shipping_info(session: CheckoutSession) -> None:
        if session.shipping_info is None:
            raise PreconditionError(
                "Shipping information must be provided first",
                resume_step=CheckoutStep.SHIPPING_INFO.value,
            )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def initialize_checkout(self, session_id: str) -> CheckoutResult:
        """Start a checkout, or return the session's active one.

        A completed or abandoned checkout is replaced by a new one.

        Args:
            session_id: Session identifier.

        Returns:
            CheckoutResult (``created`` tells whether a new id was issued).
        """
        session = await self.session_store.get_or_create(session_id)
        items, _ = await self._cart(session_id)

        if session.has_active_checkout:
            logger.debug(
                "Checkout already active",
                checkout_id=session.checkout_id,
                step=session.step.value,
            )
            return CheckoutResult(
                checkout_id=session.checkout_id,
                step=session.step,
                next_step=CheckoutStep.PERSONAL_INFO.value,
                cart_item_count=len(items),
                created=False,
            )

        stored = await self._ensure_checkout(session)
        return CheckoutResult(
            checkout_id=stored.checkout_id,
            step=stored.step,
            next_step=CheckoutStep.PERSONAL_INFO.value,
            cart_item_count=len(items),
            created=True,
        )

    async def submit_personal_info(
        self,
        session_id: str,
        first_name: str | None,
        last_name: str | None,
        email: str | None = None,
        phone: str | None = None,
    ) -> CheckoutResult:
        """Store personal information and advance to the personal info step.

        Raises:
            ValidationError: Missing names or malformed email (step unchanged).
            PreconditionError: If the checkout cannot accept the step.
        """
        info = PersonalInfo.create(first_name, last_name, email=email, phone=phone)

        session = await self.session_store.get_or_create(session_id)
        session = await self._ensure_checkout(session)
        validate_checkout_transition(session.step, CheckoutStep.PERSONAL_INFO, session.checkout_id)

        stored = await self._write(
            session,
            session.copy(step=CheckoutStep.PERSONAL_INFO, personal_info=info),
        )
        items, totals = await self._cart(session_id)
        logger.info(
            "Personal info saved",
            checkout_id=stored.checkout_id,
            session_id=session_id,
            request_id=self.request_id,
        )
        await self.tracker.update(
            stored.checkout_id,
            CheckoutStep.PERSONAL_INFO,
            personal_info=info,
            totals=totals,
            items=items,
        )
        return CheckoutResult(
            checkout_id=stored.checkout_id,
            step=CheckoutStep.PERSONAL_INFO,
            next_step=CheckoutStep.SHIPPING_INFO.value,
            cart_item_count=len(items),
        )

    async def submit_shipping_info(
        self,
        session_id: str,
        address: str | None,
        city: str | None,
        state: str | None,
        zip: str | None,
        shipping_method: str | None,
    ) -> CheckoutResult:
        """Store shipping information and advance to the shipping step.

        Raises:
            PreconditionError: If personal information is missing.
            ValidationError: Listing every missing shipping field.
        """
        session = await self.session_store.get_or_create(session_id)
        self._require_personal_info(session)

        info = ShippingInfo.create(address, city, state, zip, shipping_method)
        validate_checkout_transition(session.step, CheckoutStep.SHIPPING_INFO, session.checkout_id)

        stored = await self._write(
            session,
            session.copy(step=CheckoutStep.SHIPPING_INFO, shipping_info=info),
        )
        items, totals = await self._cart(session_id)
        logger.info(
            "Shipping info saved",
            checkout_id=stored.checkout_id,
            shipping_method=info.shipping_method,
            cart_total=str(totals.total),
            request_id=self.request_id,
        )
        await self.tracker.update(
            stored.checkout_id,
            CheckoutStep.SHIPPING_INFO,
            shipping_info=info,
            totals=totals,
            items=items,
        )
        return CheckoutResult(
            checkout_id=stored.checkout_id,
            step=CheckoutStep.SHIPPING_INFO,
            next_step="payment_method",
            cart_item_count=len(items),
            cart_total=totals.total,
        )

    async def select_payment_method(
        self,
        session_id: str,
        payment_method: str | None,
    ) -> PaymentSelection:
        """Choose how to pay.

        Card payments get a gateway intent for the live cart total;
        bank and crypto payments get transfer instructions.

        Raises:
            PreconditionError: If earlier steps are incomplete.
            ValidationError: Unsupported method or empty cart.
            GatewayError: If the intent cannot be created.
        """
        session = await self.session_store.get_or_create(session_id)
        self._require_personal_info(session)
        self._require_shipping_info(session)
        validate_checkout_transition(session.step, CheckoutStep.PAYMENT_SELECTION, session.checkout_id)

        method = PaymentMethod.parse(payment_method)
        items, totals = await self._cart(session_id)
        if totals.is_empty:
            raise ValidationError("Cart is empty")

        if method == PaymentMethod.CARD:
            handle = await self.payment_service.upsert_intent(
                session,
                totals.total_cents,
                CustomerInfo.from_checkout(session.personal_info, session.shipping_info),
                items,
                session.shipping_info.shipping_method,
            )
            updated = session.copy(
                step=CheckoutStep.PAYMENT_SELECTION,
                payment_method=method,
                payment_intent_id=handle.payment_intent_id,
            )
            selection = PaymentSelection(
                payment_method=method,
                amount=totals.total,
                next_step="card_payment",
                client_secret=handle.client_secret,
                payment_intent_id=handle.payment_intent_id,
            )
        else:
            updated = session.copy(step=CheckoutStep.PAYMENT_SELECTION, payment_method=method)
            selection = PaymentSelection(
                payment_method=method,
                amount=totals.total,
                next_step="confirm_payment",
                bank_info=(
                    bank_instructions(session.checkout_id, totals.total)
                    if method == PaymentMethod.BANK
                    else None
                ),
                crypto_info=(
                    crypto_instructions(session.checkout_id, totals.total)
                    if method == PaymentMethod.CRYPTO
                    else None
                ),
            )

        stored = await self._write(session, updated)
        logger.info(
            "Payment method selected",
            checkout_id=stored.checkout_id,
            payment_method=method.value,
            amount=str(totals.total),
            request_id=self.request_id,
        )
        await self.tracker.update(stored.checkout_id, CheckoutStep.PAYMENT_SELECTION, totals=totals)
        return selection

    async def confirm_non_card_payment(
        self,
        session_id: str,
        payment_method: str | None,
        transaction_id: str | None = None,
    ) -> ManualConfirmation:
        """Confirm a bank or crypto payment and record the order.

        The confirmation is claimed by moving to payment processing
        first, so a repeated submission cannot record a second order. If
        recording fails the claim is released and the error propagates.

        Raises:
            ValidationError: Card method, or empty cart.
            PreconditionError: If the method was not selected first.
        """
        method = PaymentMethod.parse(payment_method)
        if not method.is_manual:
            raise ValidationError("Card payments are confirmed through the payment gateway")

        session = await self.session_store.get_or_create(session_id)
        self._require_personal_info(session)
        if session.payment_method != method:
            raise PreconditionError(
                f"Payment method '{method.value}' has not been selected",
                resume_step=CheckoutStep.PAYMENT_SELECTION.value,
            )
        validate_checkout_transition(session.step, CheckoutStep.PAYMENT_PROCESSING, session.checkout_id)

        items, totals = await self._cart(session_id)
        if totals.is_empty:
            raise ValidationError("Cart is empty")

        claimed = await self._write(session, session.copy(step=CheckoutStep.PAYMENT_PROCESSING))
        await self.tracker.update(claimed.checkout_id, CheckoutStep.PAYMENT_PROCESSING)

        reference = (transaction_id or "").strip() or f"manual-{int(time.time() * 1000)}"
        details = json.dumps(
            {
                "id": reference,
                "amount": float(totals.total),
                "currency": settings.currency,
                "status": "pending_verification",
                "paymentMethod": method.value,
            }
        )
        try:
            result = await self.materializer.materialize_cart(
                session_id,
                items,
                CustomerInfo.from_checkout(claimed.personal_info, claimed.shipping_info),
                claimed.shipping_info.shipping_method if claimed.shipping_info else None,
                method.value,
                reference,
                payment_details=details,
            )
        except Exception:
            await self._release_claim(claimed)
            raise

        await self._complete(session_id, claimed.checkout_id)
        return ManualConfirmation(
            payment_method=method,
            order_id=result.order_id,
            payment_reference=reference,
            record_count=result.record_count,
            duplicate=result.duplicate,
            message=(
                "Order recorded. It will ship once the "
                f"{'bank transfer' if method == PaymentMethod.BANK else 'crypto payment'} is verified."
            ),
        )

    async def _release_claim(self, claimed: CheckoutSession) -> None:
        """Return a failed confirmation to payment selection so it can be retried."""
        released = await self.session_store.compare_and_swap(
            claimed.copy(step=CheckoutStep.PAYMENT_SELECTION), claimed.version
        )
        if released is None:
            logger.warning(
                "Payment claim left in place; session changed meanwhile",
                checkout_id=claimed.checkout_id,
                request_id=self.request_id,
            )
            return
        logger.warning(
            "Payment confirmation failed; checkout back at payment selection",
            checkout_id=claimed.checkout_id,
            request_id=self.request_id,
        )
        await self.tracker.update(claimed.checkout_id, CheckoutStep.PAYMENT_SELECTION)

    async def _complete(self, session_id: str, checkout_id: str) -> None:
        for _ in range(_COMPLETION_ATTEMPTS):
            session = await self.session_store.get_or_create(session_id)
            if session.checkout_id != checkout_id or session.step == CheckoutStep.COMPLETED:
                return
            validate_checkout_transition(session.step, CheckoutStep.COMPLETED, checkout_id)
            stored = await self.session_store.compare_and_swap(
                session.copy(step=CheckoutStep.COMPLETED), session.version
            )
            if stored is not None:
                logger.info("Checkout completed", checkout_id=checkout_id, request_id=self.request_id)
                await self.tracker.mark_completed(checkout_id)
                return
        raise ConcurrentModificationError(session_id, session.version)

    async def abandon_checkout(self, session_id: str) -> CheckoutResult:
        """Abandon the session's checkout on an explicit client signal.

        Raises:
            PreconditionError: If there is no active checkout.
        """
        session = await self.session_store.get_or_create(session_id)
        validate_checkout_transition(session.step, CheckoutStep.ABANDONED, session.checkout_id)

        stored = await self._write(session, session.copy(step=CheckoutStep.ABANDONED))
        logger.info(
            "Checkout abandoned",
            checkout_id=stored.checkout_id,
            session_id=session_id,
            request_id=self.request_id,
        )
        await self.tracker.mark_abandoned(stored.checkout_id)
        return CheckoutResult(
            checkout_id=stored.checkout_id,
            step=CheckoutStep.ABANDONED,
            next_step=None,
        )

    async def get_checkout_state(self, session_id: str) -> CheckoutState:
        """Current checkout data with live cart totals."""
        session = await self.session_store.get(session_id) or CheckoutSession(session_id=session_id)
        items, totals = await self._cart(session_id)
        return CheckoutState(session=session, totals=totals, items=items)


def get_checkout_service(request_id: str | None = None) -> CheckoutService:
    """Get checkout service instance.

    Args:
        request_id: Request ID for correlation.

    Returns:
        CheckoutService instance.
    """
    return CheckoutService(
        session_store=get_session_store(),
        cart_store=get_cart_store(),
        payment_service=get_payment_service(request_id=request_id),
        materializer=get_order_materializer(),
        tracker=get_checkout_tracker(),
        request_id=request_id,
    )
