"""Checkout API endpoints.

Provides endpoints for the step-by-step checkout of the caller's session:
- POST /api/checkout/initialize - start or resume a checkout
- POST /api/checkout/personal-info - submit customer details
- POST /api/checkout/shipping-info - submit shipping address and method
- POST /api/checkout/payment-method - choose card, bank or crypto
- POST /api/checkout/confirm-payment - confirm a bank or crypto payment
- POST /api/checkout/abandon - abandon the checkout
- GET /api/checkout/status - current checkout state
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from storefront.api.dependencies import checkout_service, get_session_id
from storefront.api.schemas import (
    CheckoutStatusResponse,
    ConfirmManualPaymentRequest,
    ConfirmManualPaymentResponse,
    ErrorResponse,
    InitializeCheckoutResponse,
    PaymentMethodRequest,
    PaymentMethodResponse,
    PersonalInfoRequest,
    ShippingInfoRequest,
    StepResponse,
)
from storefront.application.checkout_service import CheckoutService

router = APIRouter(prefix="/api/checkout", tags=["Checkout"])

Service = Annotated[CheckoutService, Depends(checkout_service)]
SessionId = Annotated[str, Depends(get_session_id)]


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "/initialize",
    response_model=InitializeCheckoutResponse,
    summary="Initialize checkout",
    description="Start a checkout for the session, or return the active one.",
)
async def initialize_checkout(
    session_id: SessionId,
    service: Service,
) -> InitializeCheckoutResponse:
    """Initialize the session's checkout.

    Args:
        session_id: Caller's session id.
        service: Checkout service.

    Returns:
        Checkout id and cart size.
    """
    result = await service.initialize_checkout(session_id)
    return InitializeCheckoutResponse(
        checkout_id=result.checkout_id,
        cart_item_count=result.cart_item_count,
        next_step=result.next_step,
        created=result.created,
    )


@router.post(
    "/personal-info",
    response_model=StepResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}},
    summary="Submit personal information",
    description="Store first/last name, email and phone. State: personal_info",
)
async def submit_personal_info(
    body: PersonalInfoRequest,
    session_id: SessionId,
    service: Service,
) -> StepResponse:
    """Submit personal information.

    Initializes the checkout when none is active.

    Args:
        body: Personal information.
        session_id: Caller's session id.
        service: Checkout service.

    Returns:
        Step outcome with the next step.
    """
    result = await service.submit_personal_info(
        session_id,
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        phone=body.phone,
    )
    return StepResponse(
        checkout_id=result.checkout_id,
        step=result.step.value,
        next_step=result.next_step,
        cart_item_count=result.cart_item_count,
    )


@router.post(
    "/shipping-info",
    response_model=StepResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}},
    summary="Submit shipping information",
    description="Store shipping address and method. State: shipping_info",
)
async def submit_shipping_info(
    body: ShippingInfoRequest,
    session_id: SessionId,
    service: Service,
) -> StepResponse:
    """Submit shipping information.

    Args:
        body: Shipping information.
        session_id: Caller's session id.
        service: Checkout service.

    Returns:
        Step outcome with the live cart total.
    """
    result = await service.submit_shipping_info(
        session_id,
        address=body.address,
        city=body.city,
        state=body.state,
        zip=body.zip_code,
        shipping_method=body.shipping_method,
    )
    return StepResponse(
        checkout_id=result.checkout_id,
        step=result.step.value,
        next_step=result.next_step,
        cart_total=float(result.cart_total) if result.cart_total is not None else None,
        item_count=result.cart_item_count,
    )


@router.post(
    "/payment-method",
    response_model=PaymentMethodResponse,
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    summary="Select payment method",
    description="Choose card, bank or crypto. State: payment_selection",
)
async def select_payment_method(
    body: PaymentMethodRequest,
    session_id: SessionId,
    service: Service,
) -> PaymentMethodResponse:
    """Select the payment method.

    Card payments return the gateway client secret; bank and crypto
    payments return transfer instructions.

    Args:
        body: Payment method selection.
        session_id: Caller's session id.
        service: Checkout service.

    Returns:
        Amount due and how to pay it.
    """
    selection = await service.select_payment_method(session_id, body.payment_method)
    return PaymentMethodResponse(
        payment_method=selection.payment_method.value,
        amount=float(selection.amount),
        next_step=selection.next_step,
        client_secret=selection.client_secret,
        payment_intent_id=selection.payment_intent_id,
        bank_info=selection.bank_info,
        crypto_info=selection.crypto_info,
    )


@router.post(
    "/confirm-payment",
    response_model=ConfirmManualPaymentResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Confirm manual payment",
    description="Confirm a bank or crypto payment and record the order. State: completed",
)
async def confirm_payment(
    body: ConfirmManualPaymentRequest,
    session_id: SessionId,
    service: Service,
) -> ConfirmManualPaymentResponse:
    """Confirm a bank or crypto payment.

    Args:
        body: Payment method and optional transaction reference.
        session_id: Caller's session id.
        service: Checkout service.

    Returns:
        Recorded order.
    """
    confirmation = await service.confirm_non_card_payment(
        session_id,
        body.payment_method,
        transaction_id=body.transaction_id,
    )
    return ConfirmManualPaymentResponse(
        payment_method=confirmation.payment_method.value,
        order_id=confirmation.order_id,
        payment_reference=confirmation.payment_reference,
        record_count=confirmation.record_count,
        duplicate=confirmation.duplicate,
        message=confirmation.message,
    )


@router.post(
    "/abandon",
    response_model=StepResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}},
    summary="Abandon checkout",
    description="Abandon the active checkout. State: abandoned",
)
async def abandon_checkout(
    session_id: SessionId,
    service: Service,
) -> StepResponse:
    """Abandon the session's checkout.

    Args:
        session_id: Caller's session id.
        service: Checkout service.

    Returns:
        Final step.
    """
    result = await service.abandon_checkout(session_id)
    return StepResponse(checkout_id=result.checkout_id, step=result.step.value)


@router.get(
    "/status",
    response_model=CheckoutStatusResponse,
    summary="Get checkout status",
    description="Current checkout step, collected data and live cart totals.",
)
async def get_checkout_status(
    session_id: SessionId,
    service: Service,
) -> CheckoutStatusResponse:
    """Get the session's checkout state.

    Args:
        session_id: Caller's session id.
        service: Checkout service.

    Returns:
        Checkout state.
    """
    state = await service.get_checkout_state(session_id)
    session = state.session
    personal = session.personal_info
    shipping = session.shipping_info
    return CheckoutStatusResponse(
        checkout_id=session.checkout_id,
        step=session.step.value if session.step else None,
        personal_info=(
            {
                "firstName": personal.first_name,
                "lastName": personal.last_name,
                "email": personal.email,
                "phone": personal.phone,
            }
            if personal
            else None
        ),
        shipping_info=(
            {
                "address": shipping.address,
                "city": shipping.city,
                "state": shipping.state,
                "zipCode": shipping.zip,
                "shippingMethod": shipping.shipping_method,
            }
            if shipping
            else None
        ),
        payment_method=session.payment_method.value if session.payment_method else None,
        payment_intent_id=session.payment_intent_id,
        cart_item_count=state.totals.item_count,
        cart_total=float(state.totals.total),
    )
