"""Value Objects for the domain layer.

Value objects are immutable objects that are defined by their attributes
rather than identity. They are interchangeable when their values are equal.
"""

import re
import secrets
import string
import time
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Self

from storefront.domain.exceptions import ValidationError

CENT = Decimal("0.01")

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_ORDER_SUFFIX_ALPHABET = string.digits + string.ascii_uppercase


# ============================================================================
# Money Helpers
# ============================================================================


def quantize_money(amount: Decimal | int | float | str) -> Decimal:
    """Round an amount in major units to cents (half-up)."""
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Convert major units to an integer amount of cents.

    Args:
        amount: Amount in major units.

    Returns:
        round(amount * 100) using half-up rounding.
    """
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    """Convert cents to major units."""
    return quantize_money(Decimal(amount) / 100)


# ============================================================================
# Identifiers
# ============================================================================


def generate_order_id(prefix: str = "TA", now: float | None = None) -> str:
    """Generate a human-shareable order identifier.

    Format: ``<prefix>-<unix seconds>-<6 chars of [0-9A-Z]>``.
    """
    seconds = int(now if now is not None else time.time())
    suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(6))
    return f"{prefix}-{seconds}-{suffix}"


def generate_checkout_id(now: float | None = None) -> str:
    """Generate a checkout identifier.

    Format: ``CHK-<unix millis>-<6 upper hex>``.
    """
    millis = int((now if now is not None else time.time()) * 1000)
    return f"CHK-{millis}-{secrets.token_hex(3).upper()}"


# ============================================================================
# Payment Methods
# ============================================================================


class PaymentMethod(str, Enum):
    """Supported payment methods."""

    CARD = "card"
    BANK = "bank"
    CRYPTO = "crypto"

    @property
    def is_manual(self) -> bool:
        """Manual methods are confirmed by the customer, not the gateway."""
        return self != PaymentMethod.CARD

    @classmethod
    def parse(cls, value: str | None) -> Self:
        """Parse a client-supplied payment method.

        Raises:
            ValidationError: If the value is missing or unsupported.
        """
        if not value:
            raise ValidationError("Payment method is required", missing_fields=["paymentMethod"])
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValidationError(
                f"Unsupported payment method: {value}",
                details={"supported": [m.value for m in cls]},
            ) from None


# ============================================================================
# Customer Data
# ============================================================================


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class PersonalInfo:
    """Customer contact details collected at the first step."""

    first_name: str
    last_name: str
    email: str | None = None
    phone: str | None = None

    @classmethod
    def create(
        cls,
        first_name: str | None,
        last_name: str | None,
        email: str | None = None,
        phone: str | None = None,
    ) -> Self:
        """Validate raw input and build personal info.

        Raises:
            ValidationError: If a name is missing or the email is malformed.
        """
        first = _clean(first_name)
        last = _clean(last_name)
        missing = [
            name
            for name, value in (("firstName", first), ("lastName", last))
            if value is None
        ]
        if missing:
            raise ValidationError(
                "First name and last name are required",
                missing_fields=missing,
            )

        email = _clean(email)
        if email is not None and not _EMAIL_PATTERN.match(email):
            raise ValidationError(
                "Email address is not valid",
                details={"field": "email"},
            )

        return cls(first_name=first, last_name=last, email=email, phone=_clean(phone))

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass(frozen=True)
class ShippingInfo:
    """Delivery address and method collected at the second step."""

    address: str
    city: str
    state: str
    zip: str
    shipping_method: str

    @classmethod
    def create(
        cls,
        address: str | None,
        city: str | None,
        state: str | None,
        zip: str | None,
        shipping_method: str | None,
    ) -> Self:
        """Validate raw input and build shipping info.

        Raises:
            ValidationError: Listing every missing field.
        """
        values = {
            "address": _clean(address),
            "city": _clean(city),
            "state": _clean(state),
            "zipCode": _clean(zip),
            "shippingMethod": _clean(shipping_method),
        }
        missing = [name for name, value in values.items() if value is None]
        if missing:
            raise ValidationError(
                "All shipping fields are required",
                missing_fields=missing,
            )
        return cls(
            address=values["address"],
            city=values["city"],
            state=values["state"],
            zip=values["zipCode"],
            shipping_method=values["shippingMethod"],
        )


@dataclass(frozen=True)
class CustomerInfo:
    """Customer block copied onto every order record."""

    first_name: str
    last_name: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None

    @classmethod
    def from_checkout(
        cls,
        personal: PersonalInfo | None,
        shipping: ShippingInfo | None,
    ) -> Self:
        """Build customer info from the checkout steps' data."""
        return cls(
            first_name=personal.first_name if personal else "Unknown",
            last_name=personal.last_name if personal else "Customer",
            email=personal.email if personal else None,
            phone=personal.phone if personal else None,
            address=shipping.address if shipping else None,
            city=shipping.city if shipping else None,
            state=shipping.state if shipping else None,
            zip=shipping.zip if shipping else None,
        )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class ShippingAddress:
    """Shipping block of a payment intent."""

    name: str | None = None
    line1: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str = "US"
    phone: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> Self | None:
        """Read a gateway shipping object, tolerating missing keys."""
        if not payload:
            return None
        address = payload.get("address") or {}
        return cls(
            name=payload.get("name"),
            line1=address.get("line1"),
            city=address.get("city"),
            state=address.get("state"),
            postal_code=address.get("postal_code"),
            country=address.get("country") or "US",
            phone=payload.get("phone"),
        )

    def to_payload(self) -> dict[str, Any]:
        """Render as the gateway's shipping object."""
        payload: dict[str, Any] = {
            "name": self.name or "",
            "address": {
                "line1": self.line1 or "",
                "city": self.city or "",
                "state": self.state or "",
                "postal_code": self.postal_code or "",
                "country": self.country,
            },
        }
        if self.phone:
            payload["phone"] = self.phone
        return payload


# ============================================================================
# Cart Data
# ============================================================================


@dataclass(frozen=True)
class ProductRef:
    """Catalog product as seen by the cart.

    Attributes:
        id: Catalog product identifier.
        name: Display name.
        price: Base unit price in major units.
        weight_prices: Unit prices keyed by weight option (e.g. "5mg").
    """

    id: int | str
    name: str
    price: Decimal
    weight_prices: dict[str, Decimal] = field(default_factory=dict)

    def unit_price(self, weight: str | None = None) -> Decimal:
        """Get the unit price for a weight option.

        Falls back to the base price when no weight-specific price exists.
        """
        if weight:
            wanted = weight.strip().lower()
            for option, price in self.weight_prices.items():
                if option.strip().lower() == wanted and price is not None:
                    return quantize_money(price)
        return quantize_money(self.price)


@dataclass(frozen=True)
class CartItem:
    """One line of a session cart."""

    id: int | str
    product: ProductRef
    quantity: int
    selected_weight: str | None = None

    @property
    def product_id(self) -> int | str:
        return self.product.id

    @property
    def unit_price(self) -> Decimal:
        return self.product.unit_price(self.selected_weight)

    @property
    def line_total(self) -> Decimal:
        return quantize_money(self.unit_price * self.quantity)


@dataclass(frozen=True)
class CartTotals:
    """Totals of a cart in major units."""

    subtotal: Decimal
    shipping: Decimal
    total: Decimal
    item_count: int
    quantity: int

    @property
    def total_cents(self) -> int:
        return to_minor_units(self.total)

    @property
    def is_empty(self) -> bool:
        return self.item_count == 0


def shipping_cost(
    quantity: int,
    flat_rate: Decimal = Decimal("15.00"),
    bulk_rate: Decimal = Decimal("25.00"),
    bulk_threshold: int = 5,
) -> Decimal:
    """Flat-rate shipping by total unit count.

    Args:
        quantity: Total units in the cart.
        flat_rate: Rate for 1..bulk_threshold units.
        bulk_rate: Rate above bulk_threshold units.
        bulk_threshold: Largest unit count charged the flat rate.

    Returns:
        Shipping cost in major units; zero for an empty cart.
    """
    if quantity <= 0:
        return quantize_money(0)
    if quantity > bulk_threshold:
        return quantize_money(bulk_rate)
    return quantize_money(flat_rate)


def compute_cart_totals(
    items: list[CartItem],
    flat_rate: Decimal = Decimal("15.00"),
    bulk_rate: Decimal = Decimal("25.00"),
    bulk_threshold: int = 5,
) -> CartTotals:
    """Compute subtotal, shipping and total for cart items."""
    subtotal = quantize_money(sum((item.line_total for item in items), Decimal("0")))
    quantity = sum(item.quantity for item in items)
    shipping = shipping_cost(quantity, flat_rate, bulk_rate, bulk_threshold)
    return CartTotals(
        subtotal=subtotal,
        shipping=shipping,
        total=quantize_money(subtotal + shipping),
        item_count=len(items),
        quantity=quantity,
    )
