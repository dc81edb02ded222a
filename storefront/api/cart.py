"""Cart read endpoints.

Provides:
- GET /api/cart - session cart with line totals
- POST /api/calculate-cart-total - cart total with shipping
- POST /api/shipping-rates - flat shipping rate for the cart
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from storefront.api.dependencies import checkout_service, get_session_id
from storefront.api.schemas import (
    CartItemSchema,
    CartResponse,
    CartTotalResponse,
    ErrorResponse,
    ShippingRate,
    ShippingRatesResponse,
)
from storefront.application.checkout_service import CheckoutService
from storefront.domain.exceptions import ValidationError
from storefront.infrastructure.config import settings

router = APIRouter(prefix="/api", tags=["Cart"])

Service = Annotated[CheckoutService, Depends(checkout_service)]
SessionId = Annotated[str, Depends(get_session_id)]


@router.get("/cart", response_model=CartResponse, summary="Get cart")
async def get_cart(session_id: SessionId, service: Service) -> CartResponse:
    """Get the session's cart."""
    state = await service.get_checkout_state(session_id)
    return CartResponse(
        items=[
            CartItemSchema(
                id=item.id,
                product_id=item.product_id,
                name=item.product.name,
                quantity=item.quantity,
                selected_weight=item.selected_weight,
                unit_price=float(item.unit_price),
                line_total=float(item.line_total),
            )
            for item in state.items
        ],
        item_count=state.totals.item_count,
        subtotal=float(state.totals.subtotal),
    )


@router.post(
    "/calculate-cart-total",
    response_model=CartTotalResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Calculate cart total",
)
async def calculate_cart_total(session_id: SessionId, service: Service) -> CartTotalResponse:
    """Cart total including flat-rate shipping.

    Raises:
        ValidationError: If the cart is empty.
    """
    totals = await service.cart_totals(session_id)
    if totals.is_empty:
        raise ValidationError("Cart is empty")
    return CartTotalResponse(
        amount=float(totals.total),
        subtotal=float(totals.subtotal),
        shipping=float(totals.shipping),
        item_count=totals.item_count,
    )


@router.post(
    "/shipping-rates",
    response_model=ShippingRatesResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Get shipping rates",
)
async def shipping_rates(session_id: SessionId, service: Service) -> ShippingRatesResponse:
    """The single flat shipping rate for the cart's unit count.

    Raises:
        ValidationError: If the cart is empty.
    """
    totals = await service.cart_totals(session_id)
    if totals.is_empty:
        raise ValidationError("Your cart is empty")
    return ShippingRatesResponse(
        rates=[
            ShippingRate(
                service_type="USPS_FLAT_RATE",
                service_name="Standard Shipping via USPS",
                transit_time="1-2 business days",
                price=float(totals.shipping),
                currency=settings.currency.upper(),
            )
        ],
    )
