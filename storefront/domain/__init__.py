"""Domain layer - entities, value objects, the checkout state machine.

This module exports the core domain building blocks:

- **Entities**: CheckoutSession, PaymentIntent, OrderRecord
- **Value Objects**: PersonalInfo, ShippingInfo, CartItem, CartTotals, CustomerInfo
- **State Machine**: CheckoutStep and its transition table
- **Exceptions**: Domain-specific errors

Example usage:
    from storefront.domain import CheckoutStep, PersonalInfo

    info = PersonalInfo.create("Ada", "Lovelace", email="ada@example.com")
    CheckoutStep.STARTED.can_transition_to(CheckoutStep.PERSONAL_INFO)  # True
"""

from storefront.domain.entities import (
    CheckoutSession,
    OrderRecord,
    PaymentIntent,
    PaymentIntentStatus,
)
from storefront.domain.exceptions import (
    ConcurrentModificationError,
    DomainError,
    GatewayError,
    InvalidStepTransitionError,
    PreconditionError,
    SignatureError,
    SinkWriteError,
    ValidationError,
)
from storefront.domain.state_machines import CheckoutStep, validate_checkout_transition
from storefront.domain.value_objects import (
    CartItem,
    CartTotals,
    CustomerInfo,
    PaymentMethod,
    PersonalInfo,
    ProductRef,
    ShippingAddress,
    ShippingInfo,
    compute_cart_totals,
    generate_checkout_id,
    generate_order_id,
)

__all__ = [
    # Entities
    "CheckoutSession",
    "OrderRecord",
    "PaymentIntent",
    "PaymentIntentStatus",
    # Exceptions
    "ConcurrentModificationError",
    "DomainError",
    "GatewayError",
    "InvalidStepTransitionError",
    "PreconditionError",
    "SignatureError",
    "SinkWriteError",
    "ValidationError",
    # State machine
    "CheckoutStep",
    "validate_checkout_transition",
    # Value objects
    "CartItem",
    "CartTotals",
    "CustomerInfo",
    "PaymentMethod",
    "PersonalInfo",
    "ProductRef",
    "ShippingAddress",
    "ShippingInfo",
    "compute_cart_totals",
    "generate_checkout_id",
    "generate_order_id",
]
