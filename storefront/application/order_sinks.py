"""Order record sinks.

Provides:
- DatabaseOrderSink: relational store (async SQLAlchemy)
- AirtableOrderSink: Airtable orders table

Each sink writes one order line and returns the id it was stored
under, or raises SinkWriteError. Sinks also report what they already
hold for a payment, which lets a restarted process resume an order
instead of recording it again.
"""

from typing import Any, Protocol
from uuid import uuid4

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.domain.entities import OrderRecord
from storefront.domain.exceptions import SinkWriteError
from storefront.infrastructure.airtable_client import AirtableClient, AirtableError, field_equals
from storefront.infrastructure.config import settings
from storefront.infrastructure.database import get_session_factory
from storefront.infrastructure.models import OrderRecordModel

logger = structlog.get_logger()


class OrderSink(Protocol):
    """Destination for order records."""

    name: str

    async def write(self, record: OrderRecord) -> str:
        """Persist one record and return its sink id."""
        ...

    async def find_order_id(self, payment_reference: str) -> str | None:
        """Order id already stored for a payment reference, if any."""
        ...

    async def stored_lines(self, records: list[OrderRecord]) -> dict[int, str]:
        """Line number -> sink id for the lines of an order already stored."""
        ...


# ============================================================================
# Relational Sink
# ============================================================================


class DatabaseOrderSink:
    """Writes order records to the ``order_records`` table.

    A unique constraint on (payment_reference, line_number) makes the
    write idempotent: a conflicting insert returns the existing row id.
    """

    name = "database"

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession] | None = None
    ) -> None:
        self._session_factory = session_factory

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    @staticmethod
    def _to_model(record: OrderRecord) -> OrderRecordModel:
        customer = record.customer
        return OrderRecordModel(
            id=str(uuid4()),
            order_id=record.order_id,
            line_number=record.line_number,
            product_id=record.product_id,
            product_name=record.product_name,
            quantity=record.quantity,
            selected_weight=record.selected_weight,
            sales_price=record.sales_price,
            first_name=customer.first_name,
            last_name=customer.last_name,
            email=customer.email,
            phone=customer.phone,
            address=customer.address,
            city=customer.city,
            state=customer.state,
            zip=customer.zip,
            shipping_method=record.shipping_method,
            payment_method=record.payment_method,
            payment_reference=record.payment_reference,
            payment_details=record.payment_details,
            affiliate_code=record.affiliate_code,
            created_at=record.created_at,
        )

    async def _existing_id(self, session: AsyncSession, record: OrderRecord) -> str | None:
        return await session.scalar(
            select(OrderRecordModel.id).where(
                OrderRecordModel.payment_reference == record.payment_reference,
                OrderRecordModel.line_number == record.line_number,
            )
        )

    async def write(self, record: OrderRecord) -> str:
        """Insert one order line.

        Raises:
            SinkWriteError: If the database is unreachable or rejects the row.
        """
        try:
            async with self._factory()() as session:
                model = self._to_model(record)
                session.add(model)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    existing = await self._existing_id(session, record)
                    if existing is None:
                        raise
                    logger.info(
                        "Order record already stored",
                        order_id=record.order_id,
                        payment_reference=record.payment_reference,
                        line_number=record.line_number,
                    )
                    return existing
                return model.id
        except (SQLAlchemyError, OSError) as e:
            raise SinkWriteError(self.name, str(e), order_id=record.order_id) from e

    async def find_order_id(self, payment_reference: str) -> str | None:
        """Order id of the rows stored for a payment reference.

        Raises:
            SinkWriteError: If the database is unreachable.
        """
        try:
            async with self._factory()() as session:
                return await session.scalar(
                    select(OrderRecordModel.order_id)
                    .where(OrderRecordModel.payment_reference == payment_reference)
                    .limit(1)
                )
        except (SQLAlchemyError, OSError) as e:
            raise SinkWriteError(self.name, str(e)) from e

    async def stored_lines(self, records: list[OrderRecord]) -> dict[int, str]:
        """Row ids of the order lines already stored, by line number."""
        if not records:
            return {}
        try:
            async with self._factory()() as session:
                rows = await session.execute(
                    select(OrderRecordModel.line_number, OrderRecordModel.id).where(
                        OrderRecordModel.payment_reference == records[0].payment_reference
                    )
                )
                return {line_number: row_id for line_number, row_id in rows.all()}
        except (SQLAlchemyError, OSError) as e:
            raise SinkWriteError(self.name, str(e), order_id=records[0].order_id) from e


# ============================================================================
# Airtable Sink
# ============================================================================


def airtable_order_fields(record: OrderRecord) -> dict[str, Any]:
    """Map an order record onto the Airtable orders table columns."""
    customer = record.customer
    return {
        "Order ID": record.order_id,
        "First Name": customer.first_name,
        "Last Name": customer.last_name,
        "Address": customer.address or "",
        "City": customer.city or "",
        "State": customer.state or "",
        "Zip": customer.zip or "",
        "MG": record.selected_weight or "",
        "Sales Price": float(record.sales_price),
        "Quantity": record.quantity,
        "Product ID": record.product_id,
        "Product": record.product_name,
        "Shipping": record.shipping_method or "",
        "Payment": record.payment_details or "",
        "Email": customer.email or "",
        "Phone": customer.phone or "",
        "Affiliate Code": record.affiliate_code or "",
    }


class AirtableOrderSink:
    """Writes order records to the Airtable orders table."""

    name = "airtable"

    def __init__(self, client: AirtableClient, table: str | None = None) -> None:
        self.client = client
        self.table = table or settings.airtable_orders_table

    async def write(self, record: OrderRecord) -> str:
        """Create one Airtable row for the record.

        Raises:
            SinkWriteError: On any Airtable failure.
        """
        try:
            return await self.client.create_record(self.table, airtable_order_fields(record))
        except AirtableError as e:
            raise SinkWriteError(self.name, e.message, order_id=record.order_id) from e

    async def find_order_id(self, payment_reference: str) -> str | None:
        # The orders table has no payment reference column.
        return None

    async def stored_lines(self, records: list[OrderRecord]) -> dict[int, str]:
        """Match rows of the order in Airtable to its lines.

        The table carries no line number, so each line claims the first
        unclaimed row with the same product, weight and quantity.

        Raises:
            SinkWriteError: On any Airtable failure.
        """
        if not records:
            return {}
        order_id = records[0].order_id
        try:
            rows = await self.client.list_records(self.table, field_equals("Order ID", order_id))
        except AirtableError as e:
            raise SinkWriteError(self.name, e.message, order_id=order_id) from e

        stored: dict[int, str] = {}
        for record in records:
            for row in rows:
                if _row_matches(row.get("fields", {}), record):
                    stored[record.line_number] = row["id"]
                    rows.remove(row)
                    break
        return stored


def _row_matches(fields: dict[str, Any], record: OrderRecord) -> bool:
    return (
        str(fields.get("Product ID", "")) == record.product_id
        and (fields.get("MG") or "") == (record.selected_weight or "")
        and int(fields.get("Quantity") or 0) == record.quantity
    )
