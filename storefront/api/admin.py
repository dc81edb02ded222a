"""Operator endpoints for order materialization.

Provides:
- GET /api/admin/materializations/{payment_reference} - delivery state per sink
- POST /api/admin/reconcile - re-drain incomplete outbox entries

Protected by the admin API key (see ``AdminApiKeyMiddleware``).
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from storefront.api.dependencies import order_materializer
from storefront.api.schemas import ErrorResponse
from storefront.application.order_materializer import OrderMaterializer

router = APIRouter(prefix="/api/admin", tags=["Admin"])

Materializer = Annotated[OrderMaterializer, Depends(order_materializer)]


@router.get(
    "/materializations/{payment_reference}",
    responses={
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Get materialization status",
)
async def get_materialization(
    payment_reference: str,
    materializer: Materializer,
) -> dict[str, Any]:
    """Delivery status of the order recorded for a payment reference.

    Raises:
        HTTPException: If no order was recorded for the reference.
    """
    entry = await materializer.status(payment_reference)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error_code": "MATERIALIZATION_NOT_FOUND",
                "message": f"No order recorded for payment reference: {payment_reference}",
            },
        )
    return entry


@router.post(
    "/reconcile",
    responses={401: {"model": ErrorResponse}},
    summary="Reconcile order sinks",
)
async def reconcile(materializer: Materializer) -> dict[str, int]:
    """Retry sink writes for every incompletely delivered order."""
    drained = await materializer.reconcile()
    return {"drained": drained}
