"""Card payment API endpoints.

Provides:
- POST /api/create-payment-intent - create or update a gateway intent
- POST /api/confirm-payment - report the status of an intent
- POST /api/record-payment-success - client-side completion signal
"""

from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends

from storefront.api.dependencies import get_session_id, payment_service
from storefront.api.schemas import (
    ConfirmPaymentResponse,
    CreatePaymentIntentRequest,
    CreatePaymentIntentResponse,
    ErrorResponse,
    PaymentIntentRequest,
    PaymentIntentSummary,
    RecordPaymentSuccessResponse,
)
from storefront.application.payment_service import PaymentService
from storefront.domain.exceptions import ValidationError

router = APIRouter(prefix="/api", tags=["Payments"])

Service = Annotated[PaymentService, Depends(payment_service)]
SessionId = Annotated[str, Depends(get_session_id)]


def _require_intent_id(body: PaymentIntentRequest) -> str:
    payment_intent_id = (body.payment_intent_id or "").strip()
    if not payment_intent_id:
        raise ValidationError(
            "Payment intent ID is required",
            missing_fields=["paymentIntentId"],
        )
    return payment_intent_id


@router.post(
    "/create-payment-intent",
    response_model=CreatePaymentIntentResponse,
    responses={
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    summary="Create payment intent",
    description="Create (or update) the session's card payment intent for the cart total.",
)
async def create_payment_intent(
    body: CreatePaymentIntentRequest,
    session_id: SessionId,
    service: Service,
) -> CreatePaymentIntentResponse:
    """Create a payment intent outside the step-by-step flow.

    Args:
        body: Optional amount override and customer details.
        session_id: Caller's session id.
        service: Payment service.

    Returns:
        Client secret and amount.
    """
    created = await service.create_payment_intent(
        session_id,
        amount=Decimal(str(body.amount)) if body.amount is not None else None,
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        phone=body.phone,
        address=body.address,
        city=body.city,
        state=body.state,
        zip=body.zip,
        shipping_method=body.shipping_method,
        affiliate_code=body.affiliate_code,
        metadata=body.metadata,
    )
    return CreatePaymentIntentResponse(
        client_secret=created.handle.client_secret,
        payment_intent_id=created.handle.payment_intent_id,
        amount=float(created.amount),
        item_count=created.item_count,
    )


@router.post(
    "/confirm-payment",
    response_model=ConfirmPaymentResponse,
    responses={
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    summary="Check payment status",
    description="Retrieve the current status of a payment intent.",
)
async def confirm_payment(
    body: PaymentIntentRequest,
    service: Service,
) -> ConfirmPaymentResponse:
    """Report the status of a payment intent.

    Args:
        body: Payment intent id.
        service: Payment service.

    Returns:
        Whether the payment succeeded, with the intent summary.
    """
    intent = await service.payment_status(_require_intent_id(body))
    return ConfirmPaymentResponse(
        success=intent.succeeded,
        payment_intent=PaymentIntentSummary(
            id=intent.id,
            status=intent.status,
            amount=intent.amount,
        ),
    )


@router.post(
    "/record-payment-success",
    response_model=RecordPaymentSuccessResponse,
    responses={
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    summary="Record payment success",
    description="Client-side signal after a card payment; records the order once.",
)
async def record_payment_success(
    body: PaymentIntentRequest,
    session_id: SessionId,
    service: Service,
) -> RecordPaymentSuccessResponse:
    """Record a successful card payment.

    The intent is re-read from the gateway. An order is recorded only
    for a succeeded intent, and only once per intent.

    Args:
        body: Payment intent id.
        session_id: Caller's session id.
        service: Payment service.

    Returns:
        Completion outcome.
    """
    completion = await service.record_payment_success(
        _require_intent_id(body), session_id=session_id
    )
    return RecordPaymentSuccessResponse(
        success=completion.success,
        status=completion.status,
        payment_intent_id=completion.payment_intent_id,
        order_id=completion.order_id,
        duplicate=completion.duplicate,
        record_count=completion.record_count,
        message=completion.message,
    )

