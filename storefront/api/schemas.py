"""API schemas for the storefront checkout API.

Pydantic models for request/response validation and serialization.
Bodies use camelCase on the wire; required checkout fields are
optional here so that missing values reach the domain validation and
come back as VALIDATION_ERROR with the list of missing fields.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Common Schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: Any = Field(default_factory=dict, description="Additional error details")
    request_id: str | None = Field(default=None, description="Request ID for correlation")


# ============================================================================
# Checkout Schemas
# ============================================================================


class InitializeCheckoutResponse(CamelModel):
    """Response of checkout initialization."""

    success: bool = True
    checkout_id: str
    cart_item_count: int
    next_step: str
    created: bool


class PersonalInfoRequest(CamelModel):
    """Personal information step."""

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None


class ShippingInfoRequest(CamelModel):
    """Shipping information step."""

    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    shipping_method: str | None = None


class StepResponse(CamelModel):
    """Response of a data-collecting step."""

    success: bool = True
    checkout_id: str
    step: str
    next_step: str | None = None
    cart_item_count: int | None = None
    cart_total: float | None = None
    item_count: int | None = None


class PaymentMethodRequest(CamelModel):
    """Payment method selection."""

    payment_method: str | None = None


class PaymentMethodResponse(CamelModel):
    """Response of payment method selection."""

    success: bool = True
    payment_method: str
    amount: float
    next_step: str
    client_secret: str | None = None
    payment_intent_id: str | None = None
    bank_info: dict[str, Any] | None = None
    crypto_info: dict[str, Any] | None = None


class ConfirmManualPaymentRequest(CamelModel):
    """Confirmation of a bank or crypto payment."""

    payment_method: str | None = None
    transaction_id: str | None = None


class ConfirmManualPaymentResponse(CamelModel):
    """Response of a manual payment confirmation."""

    success: bool = True
    payment_method: str
    order_id: str
    payment_reference: str
    record_count: int
    duplicate: bool = False
    message: str


class CheckoutStatusResponse(CamelModel):
    """Current checkout state of the session."""

    checkout_id: str | None = None
    step: str | None = None
    personal_info: dict[str, Any] | None = None
    shipping_info: dict[str, Any] | None = None
    payment_method: str | None = None
    payment_intent_id: str | None = None
    cart_item_count: int
    cart_total: float


# ============================================================================
# Payment Schemas
# ============================================================================


class CreatePaymentIntentRequest(CamelModel):
    """Direct payment intent creation."""

    amount: float | None = Field(default=None, description="Override amount in major units")
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    shipping_method: str | None = None
    affiliate_code: str | None = None
    metadata: dict[str, Any] | None = None


class CreatePaymentIntentResponse(CamelModel):
    """Client handle of a payment intent."""

    client_secret: str | None
    payment_intent_id: str
    amount: float
    item_count: int


class PaymentIntentRequest(CamelModel):
    """Body naming a payment intent."""

    payment_intent_id: str | None = None


class PaymentIntentSummary(CamelModel):
    """Minimal view of a payment intent."""

    id: str
    status: str
    amount: int


class ConfirmPaymentResponse(CamelModel):
    """Status check of a payment intent."""

    success: bool
    payment_intent: PaymentIntentSummary


class RecordPaymentSuccessResponse(CamelModel):
    """Outcome of the client-side success signal."""

    success: bool
    status: str
    payment_intent_id: str
    order_id: str | None = None
    duplicate: bool = False
    record_count: int = 0
    message: str | None = None


# ============================================================================
# Cart Schemas
# ============================================================================


class CartItemSchema(CamelModel):
    """One cart line."""

    id: int | str
    product_id: int | str
    name: str
    quantity: int
    selected_weight: str | None = None
    unit_price: float
    line_total: float


class CartResponse(CamelModel):
    """Read-only cart view."""

    items: list[CartItemSchema]
    item_count: int
    subtotal: float


class CartTotalResponse(CamelModel):
    """Cart total with shipping."""

    amount: float
    subtotal: float
    shipping: float
    item_count: int


class ShippingRate(CamelModel):
    """A shipping option quote."""

    service_type: str
    service_name: str
    transit_time: str
    price: float
    currency: str
    is_flat_rate: bool = True


class ShippingRatesResponse(CamelModel):
    """Shipping options for the cart."""

    success: bool = True
    rates: list[ShippingRate]
    is_flat_rate: bool = True


# ============================================================================
# Webhook Schemas
# ============================================================================


class WebhookResponse(CamelModel):
    """Acknowledgement sent to the gateway."""

    received: bool = True
    status: str
    event_id: str | None = None
    message: str | None = None


# ============================================================================
# Order Schemas
# ============================================================================


class OrderLineSchema(CamelModel):
    """One line of a recorded order."""

    line_number: int
    product_id: str
    product_name: str
    quantity: int
    selected_weight: str | None = None
    sales_price: float
    line_total: float


class OrderCustomerSchema(CamelModel):
    """Customer and delivery address of an order."""

    first_name: str
    last_name: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None


class OrderResponse(CamelModel):
    """A recorded order with its lines."""

    order_id: str
    customer: OrderCustomerSchema
    shipping_method: str | None = None
    payment_method: str
    payment_reference: str
    payment_details: str | None = None
    affiliate_code: str | None = None
    item_count: int
    total: float
    created_at: datetime
    lines: list[OrderLineSchema]


class OrdersListResponse(CamelModel):
    """Paginated list of orders."""

    items: list[OrderResponse]
    total: int
    limit: int
    offset: int
    has_more: bool


class OrderCountResponse(CamelModel):
    """Number of recorded orders."""

    count: int
