"""FastAPI dependencies shared by the routers.

Provides:
- The signed-cookie session id of the caller
- Service factories bound to the request ID
- The order record repository over a database session
"""

from typing import Annotated
from uuid import uuid4

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.application.checkout_service import CheckoutService, get_checkout_service
from storefront.application.order_materializer import OrderMaterializer, get_order_materializer
from storefront.application.payment_service import PaymentService, get_payment_service
from storefront.application.webhook_service import WebhookService, get_webhook_service
from storefront.infrastructure.database import get_session
from storefront.infrastructure.order_repository import OrderRecordRepository

SESSION_ID_KEY = "sid"


def get_session_id(request: Request) -> str:
    """Session id stored in the session cookie, issued on first use."""
    session_id = request.session.get(SESSION_ID_KEY)
    if not session_id:
        session_id = uuid4().hex
        request.session[SESSION_ID_KEY] = session_id
    return session_id


def checkout_service(request: Request) -> CheckoutService:
    """Get checkout service with request ID."""
    return get_checkout_service(request_id=getattr(request.state, "request_id", None))


def payment_service(request: Request) -> PaymentService:
    """Get payment service with request ID."""
    return get_payment_service(request_id=getattr(request.state, "request_id", None))


def webhook_service() -> WebhookService:
    """Get webhook service."""
    return get_webhook_service()


def order_materializer() -> OrderMaterializer:
    """Get order materializer."""
    return get_order_materializer()


def order_repository(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> OrderRecordRepository:
    """Get order record repository over a request-scoped database session."""
    return OrderRecordRepository(session)
