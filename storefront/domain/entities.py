"""Domain entities.

Provides:
- CheckoutSession: per-visitor checkout state, versioned for CAS writes
- PaymentIntent: gateway payment intent as the workflow sees it
- OrderRecord: one immutable line of a materialized order
"""

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Self

from storefront.domain.state_machines import CheckoutStep
from storefront.domain.value_objects import (
    CustomerInfo,
    PaymentMethod,
    PersonalInfo,
    ShippingAddress,
    ShippingInfo,
    from_minor_units,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Checkout Session
# ============================================================================


@dataclass
class CheckoutSession:
    """Checkout state bound to one browser session.

    Attributes:
        session_id: Session identifier carried by the session cookie.
        checkout_id: Current checkout, None before initialization.
        step: Current checkout step, None before initialization.
        personal_info: Data from the personal info step.
        shipping_info: Data from the shipping step.
        payment_method: Method chosen at payment selection.
        payment_intent_id: Gateway intent created for this checkout.
        version: Incremented on every stored write.
    """

    session_id: str
    checkout_id: str | None = None
    step: CheckoutStep | None = None
    personal_info: PersonalInfo | None = None
    shipping_info: ShippingInfo | None = None
    payment_method: PaymentMethod | None = None
    payment_intent_id: str | None = None
    version: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def has_active_checkout(self) -> bool:
        return self.checkout_id is not None and self.step is not None and self.step.is_active()

    def copy(self, **changes: Any) -> "CheckoutSession":
        """Return a detached copy with changes applied."""
        return replace(self, **changes)

    def restart(self, checkout_id: str) -> "CheckoutSession":
        """Copy of this session holding a fresh checkout.

        Step data and the payment intent are reset.
        """
        return replace(
            self,
            checkout_id=checkout_id,
            step=CheckoutStep.STARTED,
            personal_info=None,
            shipping_info=None,
            payment_method=None,
            payment_intent_id=None,
        )


# ============================================================================
# Payment Intent
# ============================================================================


class PaymentIntentStatus(str, Enum):
    """Gateway payment intent statuses."""

    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    REQUIRES_CAPTURE = "requires_capture"
    CANCELED = "canceled"
    SUCCEEDED = "succeeded"


UPDATABLE_INTENT_STATUSES = frozenset(
    {
        PaymentIntentStatus.REQUIRES_PAYMENT_METHOD.value,
        PaymentIntentStatus.REQUIRES_CONFIRMATION.value,
        PaymentIntentStatus.REQUIRES_ACTION.value,
    }
)


@dataclass(frozen=True)
class PaymentIntent:
    """A gateway payment intent.

    Attributes:
        id: Gateway intent identifier, used as the payment reference.
        amount: Amount in minor units.
        currency: ISO currency code (lower case).
        status: Gateway status string.
        client_secret: Secret handed to the browser for confirmation.
        metadata: String-valued metadata attached at creation.
        shipping: Shipping block, if provided.
        receipt_email: Email the gateway sends the receipt to.
        created: Creation time reported by the gateway.
        payment_method_types: Methods the intent accepts.
    """

    id: str
    amount: int
    currency: str = "usd"
    status: str = PaymentIntentStatus.REQUIRES_PAYMENT_METHOD.value
    client_secret: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    shipping: ShippingAddress | None = None
    receipt_email: str | None = None
    created: datetime | None = None
    payment_method_types: tuple[str, ...] = ("card",)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Self:
        """Build from a gateway JSON object (API response or webhook data)."""
        created = payload.get("created")
        return cls(
            id=payload["id"],
            amount=int(payload.get("amount") or 0),
            currency=payload.get("currency") or "usd",
            status=payload.get("status") or "",
            client_secret=payload.get("client_secret"),
            metadata={k: str(v) for k, v in (payload.get("metadata") or {}).items()},
            shipping=ShippingAddress.from_payload(payload.get("shipping")),
            receipt_email=payload.get("receipt_email"),
            created=(
                datetime.fromtimestamp(int(created), tz=timezone.utc)
                if created is not None
                else None
            ),
            payment_method_types=tuple(payload.get("payment_method_types") or ("card",)),
        )

    @property
    def amount_major(self) -> Decimal:
        return from_minor_units(self.amount)

    @property
    def succeeded(self) -> bool:
        return self.status == PaymentIntentStatus.SUCCEEDED.value

    @property
    def is_updatable(self) -> bool:
        return self.status in UPDATABLE_INTENT_STATUSES

    def details_json(self) -> str:
        """Payment details stored alongside each order record."""
        return json.dumps(
            {
                "id": self.id,
                "amount": self.amount,
                "currency": self.currency,
                "status": self.status,
                "created": int(self.created.timestamp()) if self.created else None,
                "paymentMethod": self.payment_method_types[0] if self.payment_method_types else "card",
            }
        )


# ============================================================================
# Order Record
# ============================================================================


@dataclass(frozen=True)
class OrderRecord:
    """One line item of a materialized order.

    Attributes:
        order_id: Shared by every line of the same purchase.
        line_number: 1-based position within the order.
        product_id: Catalog product id, or "unknown" for a synthetic line.
        product_name: Display name at purchase time.
        quantity: Units bought.
        selected_weight: Weight option, if any.
        sales_price: Price per unit in major units.
        customer: Customer block.
        shipping_method: Chosen shipping method.
        payment_method: card, bank or crypto.
        payment_reference: Gateway intent id or manual transaction reference.
        payment_details: JSON string describing the payment.
        affiliate_code: Referral code, if any.
    """

    order_id: str
    line_number: int
    product_id: str
    product_name: str
    quantity: int
    sales_price: Decimal
    customer: CustomerInfo
    payment_method: str
    payment_reference: str
    selected_weight: str | None = None
    shipping_method: str | None = None
    payment_details: str | None = None
    affiliate_code: str | None = None
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def line_total(self) -> Decimal:
        return self.sales_price * self.quantity
