"""Operator endpoints over recorded orders.

Provides:
- GET /api/admin/orders - list orders (paginated, searchable)
- GET /api/admin/orders/count - number of orders
- GET /api/admin/orders/{order_id} - one order with its lines

Orders are read from the relational order sink, one row per line,
grouped by order id. Protected by the admin API key.
"""

from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from storefront.api.dependencies import order_repository
from storefront.api.schemas import (
    ErrorResponse,
    OrderCountResponse,
    OrderCustomerSchema,
    OrderLineSchema,
    OrderResponse,
    OrdersListResponse,
)
from storefront.infrastructure.models import OrderRecordModel
from storefront.infrastructure.order_repository import OrderRecordRepository

router = APIRouter(prefix="/api/admin/orders", tags=["Orders"])

Repository = Annotated[OrderRecordRepository, Depends(order_repository)]


# ============================================================================
# Converters
# ============================================================================


def order_to_response(lines: list[OrderRecordModel]) -> OrderResponse:
    """Convert the lines of one order to OrderResponse."""
    head = lines[0]
    total = sum((Decimal(line.sales_price) * line.quantity for line in lines), Decimal("0"))
    return OrderResponse(
        order_id=head.order_id,
        customer=OrderCustomerSchema(
            first_name=head.first_name,
            last_name=head.last_name,
            email=head.email,
            phone=head.phone,
            address=head.address,
            city=head.city,
            state=head.state,
            zip=head.zip,
        ),
        shipping_method=head.shipping_method,
        payment_method=head.payment_method,
        payment_reference=head.payment_reference,
        payment_details=head.payment_details,
        affiliate_code=head.affiliate_code,
        item_count=sum(line.quantity for line in lines),
        total=float(total),
        created_at=min(line.created_at for line in lines),
        lines=[
            OrderLineSchema(
                line_number=line.line_number,
                product_id=line.product_id,
                product_name=line.product_name,
                quantity=line.quantity,
                selected_weight=line.selected_weight,
                sales_price=float(line.sales_price),
                line_total=float(Decimal(line.sales_price) * line.quantity),
            )
            for line in lines
        ],
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.get(
    "",
    response_model=OrdersListResponse,
    responses={401: {"model": ErrorResponse}},
    summary="List orders",
)
async def list_orders(
    repository: Repository,
    limit: int = Query(default=50, ge=1, le=200, description="Orders per page"),
    offset: int = Query(default=0, ge=0, description="Orders to skip"),
    search: str | None = Query(default=None, description="Order id, customer, email or product"),
) -> OrdersListResponse:
    """List recorded orders, newest first."""
    orders = await repository.list_orders(limit=limit, offset=offset, search=search)
    total = await repository.count_orders(search=search)
    return OrdersListResponse(
        items=[order_to_response(lines) for lines in orders],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(orders) < total,
    )


@router.get(
    "/count",
    response_model=OrderCountResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Count orders",
)
async def count_orders(repository: Repository) -> OrderCountResponse:
    return OrderCountResponse(count=await repository.count_orders())


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    responses={
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Get order details",
)
async def get_order(order_id: str, repository: Repository) -> OrderResponse:
    """Get one order with all of its lines.

    Raises:
        HTTPException: If no order has the id.
    """
    lines = await repository.get_order(order_id)
    if not lines:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error_code": "ORDER_NOT_FOUND",
                "message": f"Order not found: {order_id}",
            },
        )
    return order_to_response(lines)
