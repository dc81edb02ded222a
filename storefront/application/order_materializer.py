"""Order materialization.

Turns a completed payment into order records and delivers them to the
order sinks. Handles:
- Line item derivation from intent metadata (with fallbacks)
- Idempotency by payment reference via the outbox
- Independent, retried delivery to each sink
- Clearing the originating cart once per payment
- Resuming orders a sink already holds after a restart
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal

import structlog

from storefront.application.order_sinks import AirtableOrderSink, DatabaseOrderSink, OrderSink
from storefront.application.outbox import InMemoryOrderOutbox, OutboxEntry, get_order_outbox
from storefront.domain.entities import OrderRecord, PaymentIntent
from storefront.domain.exceptions import SinkWriteError
from storefront.domain.order_summary import OrderSummary, SummaryItem, parse_order_summary
from storefront.domain.value_objects import (
    CartItem,
    CustomerInfo,
    generate_order_id,
    quantize_money,
)
from storefront.infrastructure.airtable_client import get_airtable_client
from storefront.infrastructure.cart_store import InMemoryCartStore, get_cart_store
from storefront.infrastructure.config import settings

logger = structlog.get_logger()

UNKNOWN_PRODUCT_ID = "unknown"
UNKNOWN_PRODUCT_NAME = "Unknown Product"
DEFAULT_SHIPPING_METHOD = "standard"


@dataclass
class MaterializationResult:
    """Result of materializing one payment.

    Attributes:
        order_id: Order id shared by all records.
        payment_reference: Idempotency key of the order.
        records: Order lines.
        duplicate: True if the payment had already been materialized.
        sinks_complete: Sink name -> whether every line was written.
        cart_cleared: True if this call cleared the cart.
    """

    order_id: str
    payment_reference: str
    records: list[OrderRecord]
    duplicate: bool = False
    sinks_complete: dict[str, bool] = field(default_factory=dict)
    cart_cleared: bool = False

    @property
    def record_count(self) -> int:
        return len(self.records)


# ============================================================================
# Line Derivation
# ============================================================================


def split_name(name: str | None) -> tuple[str, str]:
    """Split a full name into first name and the rest."""
    parts = (name or "").split()
    if not parts:
        return "Unknown", "Customer"
    return parts[0], " ".join(parts[1:])


def customer_from_intent(intent: PaymentIntent, summary: OrderSummary | None) -> CustomerInfo:
    """Derive the customer block of a paid intent."""
    shipping = intent.shipping
    metadata = intent.metadata

    name = (
        (shipping.name if shipping else None)
        or (summary.customer if summary else None)
        or metadata.get("customer_name")
    )
    first_name, last_name = split_name(name)

    email = (
        (summary.email if summary else None)
        or metadata.get("customer_email")
        or intent.receipt_email
    )
    phone = (shipping.phone if shipping else None) or metadata.get("customer_phone")

    return CustomerInfo(
        first_name=first_name,
        last_name=last_name,
        email=email or None,
        phone=phone or None,
        address=shipping.line1 if shipping else None,
        city=shipping.city if shipping else None,
        state=shipping.state if shipping else None,
        zip=shipping.postal_code if shipping else None,
    )


def _unpriced_unit_price(items: list[SummaryItem], amount: Decimal) -> Decimal:
    """Unit price for items without a stored price.

    The part of the paid amount not taken by priced lines is spread
    evenly over the unpriced units, never below zero.
    """
    priced_total = sum(
        (quantize_money(item.price) * item.qty for item in items if item.price is not None),
        Decimal("0"),
    )
    unpriced_quantity = sum(item.qty for item in items if item.price is None)
    if not unpriced_quantity:
        return Decimal("0.00")
    return quantize_money(max(amount - priced_total, Decimal("0")) / unpriced_quantity)


def records_from_intent(intent: PaymentIntent, order_id: str) -> list[OrderRecord]:
    """Build the order lines of a paid intent.

    Items come from the order summary metadata. A stored per-item price
    is used as is; the rest of the paid amount is spread evenly across
    the units without one. Without any items a single "Unknown Product"
    line carrying the full amount is produced.

    Args:
        intent: Paid payment intent.
        order_id: Order id to stamp on every line.

    Returns:
        Order records in line order.
    """
    summary = parse_order_summary(intent.metadata)
    customer = customer_from_intent(intent, summary)
    amount = intent.amount_major
    common = {
        "order_id": order_id,
        "customer": customer,
        "shipping_method": intent.metadata.get("shipping_method") or DEFAULT_SHIPPING_METHOD,
        "payment_method": intent.payment_method_types[0] if intent.payment_method_types else "card",
        "payment_reference": intent.id,
        "payment_details": intent.details_json(),
        "affiliate_code": intent.metadata.get("affiliate_code") or None,
    }

    items = summary.items if summary else []
    if not items:
        logger.warning(
            "No line items in payment metadata; recording single line",
            payment_intent_id=intent.id,
            order_id=order_id,
        )
        return [
            OrderRecord(
                line_number=1,
                product_id=UNKNOWN_PRODUCT_ID,
                product_name=UNKNOWN_PRODUCT_NAME,
                quantity=1,
                sales_price=amount,
                **common,
            )
        ]

    fallback_price = _unpriced_unit_price(items, amount)

    return [
        OrderRecord(
            line_number=index,
            product_id=item.id,
            product_name=item.name or f"Product {item.id}",
            quantity=item.qty,
            selected_weight=item.weight,
            sales_price=quantize_money(item.price) if item.price is not None else fallback_price,
            **common,
        )
        for index, item in enumerate(items, start=1)
    ]


def records_from_cart(
    items: list[CartItem],
    order_id: str,
    customer: CustomerInfo,
    shipping_method: str | None,
    payment_method: str,
    payment_reference: str,
    payment_details: str | None = None,
    affiliate_code: str | None = None,
) -> list[OrderRecord]:
    """Build order lines from live cart items at their real unit prices."""
    return [
        OrderRecord(
            order_id=order_id,
            line_number=index,
            product_id=str(item.product_id),
            product_name=item.product.name,
            quantity=item.quantity,
            selected_weight=item.selected_weight,
            sales_price=item.unit_price,
            customer=customer,
            shipping_method=shipping_method or DEFAULT_SHIPPING_METHOD,
            payment_method=payment_method,
            payment_reference=payment_reference,
            payment_details=payment_details,
            affiliate_code=affiliate_code,
        )
        for index, item in enumerate(items, start=1)
    ]


# ============================================================================
# Materializer
# ============================================================================


class OrderMaterializer:
    """Creates order records for completed payments.

    Both completion paths (client success call and gateway webhook)
    converge here; the payment reference decides whether a signal is
    new or a duplicate.
    """

    def __init__(
        self,
        outbox: InMemoryOrderOutbox,
        sinks: list[OrderSink],
        cart_store: InMemoryCartStore,
        order_id_prefix: str | None = None,
        write_attempts: int | None = None,
        retry_delay: float | None = None,
    ) -> None:
        """Initialize materializer.

        Args:
            outbox: Outbox keyed by payment reference.
            sinks: Order sinks, written independently.
            cart_store: Cart collaborator.
            order_id_prefix: Prefix of generated order ids.
            write_attempts: Attempts per record per sink.
            retry_delay: Base delay between attempts, in seconds.
        """
        self.outbox = outbox
        self.sinks = sinks
        self.cart_store = cart_store
        self.order_id_prefix = order_id_prefix or settings.order_id_prefix
        self.write_attempts = max(1, write_attempts or settings.sink_write_attempts)
        self.retry_delay = retry_delay if retry_delay is not None else settings.sink_retry_delay_seconds

    @property
    def sink_names(self) -> list[str]:
        return [sink.name for sink in self.sinks]

    async def materialize_payment(
        self,
        intent: PaymentIntent,
        session_id: str | None = None,
    ) -> MaterializationResult:
        """Materialize a paid gateway intent.

        Args:
            intent: Payment intent in status succeeded.
            session_id: Fallback session when the metadata carries none.

        Returns:
            Materialization result (duplicate if already materialized).
        """
        session_id = intent.metadata.get("session_id") or session_id

        existing = await self.outbox.get(intent.id)
        if existing is not None:
            return await self._handle_duplicate(existing, session_id)

        entry = await self._prepare_entry(
            intent.id, session_id, lambda order_id: records_from_intent(intent, order_id)
        )
        logger.info(
            "Materializing card payment",
            payment_intent_id=intent.id,
            order_id=entry.order_id,
            amount=intent.amount,
            record_count=len(entry.records),
            session_id=session_id,
        )
        return await self._commit(entry)

    async def materialize_cart(
        self,
        session_id: str,
        items: list[CartItem],
        customer: CustomerInfo,
        shipping_method: str | None,
        payment_method: str,
        payment_reference: str,
        payment_details: str | None = None,
    ) -> MaterializationResult:
        """Materialize a manual (bank / crypto) payment from the live cart."""
        existing = await self.outbox.get(payment_reference)
        if existing is not None:
            return await self._handle_duplicate(existing, session_id)

        entry = await self._prepare_entry(
            payment_reference,
            session_id,
            lambda order_id: records_from_cart(
                items,
                order_id=order_id,
                customer=customer,
                shipping_method=shipping_method,
                payment_method=payment_method,
                payment_reference=payment_reference,
                payment_details=payment_details,
            ),
        )
        logger.info(
            "Materializing manual payment",
            payment_reference=payment_reference,
            payment_method=payment_method,
            order_id=entry.order_id,
            record_count=len(entry.records),
            session_id=session_id,
        )
        return await self._commit(entry)

    async def _prepare_entry(
        self,
        payment_reference: str,
        session_id: str | None,
        build_records: Callable[[str], list[OrderRecord]],
    ) -> OutboxEntry:
        """Outbox entry for a payment the outbox does not know.

        If a sink already holds lines for the reference, the process
        restarted after an earlier delivery: the stored order id is kept,
        lines each sink holds count as written and the cart is left alone.
        """
        order_id = await self._stored_order_id(payment_reference)
        if order_id is None:
            order_id = generate_order_id(self.order_id_prefix)
            return OutboxEntry(
                payment_reference=payment_reference,
                order_id=order_id,
                records=build_records(order_id),
                session_id=session_id,
            )

        entry = OutboxEntry(
            payment_reference=payment_reference,
            order_id=order_id,
            records=build_records(order_id),
            session_id=session_id,
            cart_cleared=True,
            recovered=True,
        )
        for sink in self.sinks:
            try:
                entry.writes[sink.name] = await sink.stored_lines(entry.records)
            except SinkWriteError as e:
                logger.warning(
                    "Stored order lines lookup failed",
                    sink=sink.name,
                    order_id=order_id,
                    error=e.message,
                )
        logger.info(
            "Order recovered from sinks",
            payment_reference=payment_reference,
            order_id=order_id,
            stored={name: len(lines) for name, lines in entry.writes.items()},
        )
        return entry

    async def _stored_order_id(self, payment_reference: str) -> str | None:
        for sink in self.sinks:
            try:
                order_id = await sink.find_order_id(payment_reference)
            except SinkWriteError as e:
                logger.warning(
                    "Stored order lookup failed",
                    sink=sink.name,
                    payment_reference=payment_reference,
                    error=e.message,
                )
                continue
            if order_id:
                return order_id
        return None

    async def _commit(self, entry: OutboxEntry) -> MaterializationResult:
        stored, created = await self.outbox.add_if_absent(entry)
        if not created:
            return await self._handle_duplicate(stored, entry.session_id)

        await self.drain(stored)
        cleared = await self._clear_cart_once(stored, stored.session_id)
        return self._result(stored, duplicate=stored.recovered, cart_cleared=cleared)

    async def _handle_duplicate(
        self, entry: OutboxEntry, session_id: str | None
    ) -> MaterializationResult:
        logger.info(
            "Duplicate completion signal",
            payment_reference=entry.payment_reference,
            order_id=entry.order_id,
        )
        if not entry.is_complete(self.sink_names):
            await self.drain(entry)
        cleared = await self._clear_cart_once(entry, entry.session_id or session_id)
        return self._result(entry, duplicate=True, cart_cleared=cleared)

    def _result(
        self, entry: OutboxEntry, duplicate: bool, cart_cleared: bool
    ) -> MaterializationResult:
        return MaterializationResult(
            order_id=entry.order_id,
            payment_reference=entry.payment_reference,
            records=list(entry.records),
            duplicate=duplicate,
            sinks_complete={name: entry.is_complete_for(name) for name in self.sink_names},
            cart_cleared=cart_cleared,
        )

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def drain(self, entry: OutboxEntry) -> None:
        """Write every missing line of an entry to every sink.

        A failing sink is logged and left pending; it never stops the
        other sinks.
        """
        async with entry.drain_lock:
            entry.attempts += 1
            for sink in self.sinks:
                await self._drain_sink(entry, sink)

    async def _drain_sink(self, entry: OutboxEntry, sink: OrderSink) -> None:
        for record in entry.pending_records(sink.name):
            try:
                record_id = await self._write_with_retry(sink, record)
            except SinkWriteError as e:
                await self.outbox.record_error(entry.payment_reference, sink.name, e.message)
                logger.error(
                    "Order sink write failed",
                    sink=sink.name,
                    order_id=entry.order_id,
                    payment_reference=entry.payment_reference,
                    line_number=record.line_number,
                    error=e.message,
                )
                return
            await self.outbox.record_write(
                entry.payment_reference, sink.name, record.line_number, record_id
            )

    async def _write_with_retry(self, sink: OrderSink, record: OrderRecord) -> str:
        for attempt in range(1, self.write_attempts + 1):
            try:
                return await sink.write(record)
            except SinkWriteError as e:
                if attempt == self.write_attempts:
                    raise
                logger.warning(
                    "Order sink write retry",
                    sink=sink.name,
                    order_id=record.order_id,
                    line_number=record.line_number,
                    attempt=attempt,
                    error=e.message,
                )
                await asyncio.sleep(self.retry_delay * attempt)
        raise SinkWriteError(sink.name, "no write attempts made", order_id=record.order_id)

    async def reconcile(self) -> int:
        """Re-drain every outbox entry with a sink still missing lines.

        Returns:
            Number of entries drained.
        """
        entries = await self.outbox.incomplete(self.sink_names)
        for entry in entries:
            await self.drain(entry)
        logger.info("Outbox reconciled", drained=len(entries))
        return len(entries)

    async def status(self, payment_reference: str) -> dict | None:
        """Delivery status of a materialized payment, or None."""
        entry = await self.outbox.get(payment_reference)
        return entry.to_status(self.sink_names) if entry else None

    # ------------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------------

    async def _clear_cart_once(self, entry: OutboxEntry, session_id: str | None) -> bool:
        """Clear the cart the payment was made from, once per payment."""
        if not session_id:
            return False
        if not await self.outbox.mark_cart_cleared(entry.payment_reference):
            logger.debug(
                "Cart already cleared for payment",
                payment_reference=entry.payment_reference,
                session_id=session_id,
            )
            return False
        try:
            await self.cart_store.clear_cart(session_id)
        except Exception as e:
            logger.warning("Failed to clear cart", session_id=session_id, error=str(e))
            return False
        return True


def order_total(records: list[OrderRecord]) -> Decimal:
    """Sum of sales_price x quantity over order lines."""
    return sum((r.sales_price * r.quantity for r in records), Decimal("0"))


# Global materializer instance
_order_materializer: OrderMaterializer | None = None


def get_order_materializer() -> OrderMaterializer:
    """Get the order materializer singleton.

    Wires the outbox, the order sinks and the cart store.

    Returns:
        OrderMaterializer instance.
    """
    global _order_materializer
    if _order_materializer is None:
        sinks: list[OrderSink] = [DatabaseOrderSink()]
        airtable = get_airtable_client()
        if airtable.is_configured:
            sinks.append(AirtableOrderSink(airtable))
        else:
            logger.warning("Airtable not configured; orders recorded to the database only")
        _order_materializer = OrderMaterializer(
            outbox=get_order_outbox(),
            sinks=sinks,
            cart_store=get_cart_store(),
        )
    return _order_materializer
