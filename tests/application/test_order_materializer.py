"""Tests for order materialization."""

import json
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from storefront.application.order_materializer import (
    OrderMaterializer,
    UNKNOWN_PRODUCT_ID,
    customer_from_intent,
    order_total,
    records_from_intent,
    split_name,
)
from storefront.application.outbox import InMemoryOrderOutbox
from storefront.domain.entities import PaymentIntent
from storefront.domain.value_objects import CustomerInfo, ShippingAddress

SESSION = "sess-orders"


def paid_intent(
    intent_id: str = "pi_paid_1",
    amount: int = 36000,
    items: list[dict] | None = None,
    session_id: str | None = SESSION,
    **metadata: str,
) -> PaymentIntent:
    """A succeeded intent carrying an order summary."""
    if items is not None:
        metadata["orderSummary"] = json.dumps(
            {"customer": "Jane Doe", "email": "jane@example.com", "items": items}
        )
    if session_id:
        metadata["session_id"] = session_id
    return PaymentIntent(
        id=intent_id,
        amount=amount,
        status="succeeded",
        metadata=metadata,
        shipping=ShippingAddress(
            name="Jane Doe",
            line1="1 Main St",
            city="X",
            state="TX",
            postal_code="75001",
        ),
    )


TWO_ITEMS = [
    {"id": "1", "name": "BPC-157", "qty": 2, "weight": "10mg"},
    {"id": "2", "name": "TB-500", "qty": 1},
]


class TestRecordsFromIntent:
    """Tests for deriving order lines from intent metadata."""

    def test_structured_summary_yields_one_record_per_item(self) -> None:
        """Each summary item becomes a line sharing the order id."""
        records = records_from_intent(paid_intent(items=TWO_ITEMS), "TA-1-ABCDEF")

        assert [(r.product_id, r.quantity) for r in records] == [("1", 2), ("2", 1)]
        assert {r.order_id for r in records} == {"TA-1-ABCDEF"}
        assert [r.line_number for r in records] == [1, 2]
        assert records[0].selected_weight == "10mg"
        assert records[0].payment_reference == "pi_paid_1"

    def test_amount_is_spread_evenly_across_units(self) -> None:
        """Without stored prices every unit gets an equal share."""
        records = records_from_intent(paid_intent(items=TWO_ITEMS), "TA-1-ABCDEF")

        assert all(r.sales_price == Decimal("120.00") for r in records)
        assert order_total(records) == Decimal("360.00")

    @pytest.mark.parametrize("amount", [10000, 9999, 33333, 101])
    def test_line_totals_approximate_paid_amount(self, amount: int) -> None:
        """Summed line totals stay within rounding of the paid amount."""
        intent = paid_intent(amount=amount, items=TWO_ITEMS)
        records = records_from_intent(intent, "TA-1-ABCDEF")

        units = sum(r.quantity for r in records)
        assert abs(order_total(records) - intent.amount_major) <= Decimal("0.005") * units

    def test_legacy_prices_are_used(self) -> None:
        """Per-item prices from the legacy products list are kept."""
        intent = paid_intent(
            items=None,
            products=json.dumps([{"id": 9, "name": "TB-500", "quantity": 2, "price": 60}]),
        )

        records = records_from_intent(intent, "TA-1-ABCDEF")

        assert records[0].sales_price == Decimal("60.00")
        assert records[0].quantity == 2

    def test_unpriced_items_share_what_priced_items_leave(self) -> None:
        """Mixed priced and unpriced lines still add up to the paid amount."""
        intent = paid_intent(
            amount=10000,
            items=None,
            products=json.dumps(
                [
                    {"id": 1, "name": "BPC-157", "quantity": 1, "price": 80},
                    {"id": 2, "name": "TB-500", "quantity": 1},
                ]
            ),
        )

        records = records_from_intent(intent, "TA-1-ABCDEF")

        assert [r.sales_price for r in records] == [Decimal("80.00"), Decimal("20.00")]
        assert order_total(records) == Decimal("100.00")

    def test_unpriced_share_never_goes_negative(self) -> None:
        """Priced lines above the paid amount leave unpriced lines at zero."""
        intent = paid_intent(
            amount=5000,
            items=None,
            products=json.dumps(
                [
                    {"id": 1, "name": "BPC-157", "quantity": 1, "price": 80},
                    {"id": 2, "name": "TB-500", "quantity": 2},
                ]
            ),
        )

        records = records_from_intent(intent, "TA-1-ABCDEF")

        assert records[1].sales_price == Decimal("0.00")

    @pytest.mark.parametrize(
        "metadata",
        [{}, {"orderSummary": "{not json"}, {"orderSummary": json.dumps({"count": 4})}],
    )
    def test_unparseable_items_yield_single_unknown_line(self, metadata: dict) -> None:
        """Missing item data still records the full paid amount."""
        intent = paid_intent(amount=12345, items=None, **metadata)

        records = records_from_intent(intent, "TA-1-ABCDEF")

        assert len(records) == 1
        assert records[0].product_id == UNKNOWN_PRODUCT_ID
        assert records[0].quantity == 1
        assert records[0].sales_price == Decimal("123.45")

    def test_metadata_fields_are_carried(self) -> None:
        """Shipping method, affiliate code and payment details are copied."""
        intent = paid_intent(items=TWO_ITEMS, shipping_method="express", affiliate_code="REF10")

        record = records_from_intent(intent, "TA-1-ABCDEF")[0]

        assert record.shipping_method == "express"
        assert record.affiliate_code == "REF10"
        assert record.payment_method == "card"
        assert json.loads(record.payment_details)["id"] == "pi_paid_1"


class TestCustomerFromIntent:
    """Tests for customer derivation."""

    def test_shipping_block_is_preferred(self) -> None:
        """Name and address come from the shipping block."""
        customer = customer_from_intent(paid_intent(items=TWO_ITEMS), None)

        assert (customer.first_name, customer.last_name) == ("Jane", "Doe")
        assert customer.zip == "75001"

    def test_metadata_fallbacks(self) -> None:
        """Without shipping, metadata and receipt email are used."""
        intent = PaymentIntent(
            id="pi_1",
            amount=100,
            metadata={"customer_name": "Ana María López", "customer_phone": "555"},
            receipt_email="ana@example.com",
        )

        customer = customer_from_intent(intent, None)

        assert customer.first_name == "Ana"
        assert customer.last_name == "María López"
        assert customer.email == "ana@example.com"
        assert customer.phone == "555"

    def test_split_name_defaults(self) -> None:
        """An empty name becomes the placeholder customer."""
        assert split_name(None) == ("Unknown", "Customer")
        assert split_name("Cher") == ("Cher", "")


class TestMaterializePayment:
    """Tests for OrderMaterializer.materialize_payment."""

    @pytest.mark.asyncio
    async def test_writes_every_line_to_both_sinks(self, harness) -> None:
        """Both sinks receive the same order lines."""
        result = await harness.materializer.materialize_payment(paid_intent(items=TWO_ITEMS))

        assert result.duplicate is False
        assert result.record_count == 2
        assert result.order_id.startswith("TA-")
        assert harness.database_sink.records == result.records
        assert harness.airtable_sink.records == result.records
        assert result.sinks_complete == {"database": True, "airtable": True}

    @pytest.mark.asyncio
    async def test_repeated_signal_is_a_duplicate(self, harness) -> None:
        """A second signal for the same payment writes nothing new."""
        first = await harness.materializer.materialize_payment(paid_intent(items=TWO_ITEMS))
        second = await harness.materializer.materialize_payment(paid_intent(items=TWO_ITEMS))

        assert second.duplicate is True
        assert second.order_id == first.order_id
        assert len(harness.database_sink.records) == 2
        assert len(harness.airtable_sink.records) == 2

    @pytest.mark.asyncio
    async def test_distinct_payments_get_distinct_orders(self, harness) -> None:
        """Each payment reference produces its own order."""
        first = await harness.materializer.materialize_payment(paid_intent("pi_a", items=TWO_ITEMS))
        second = await harness.materializer.materialize_payment(paid_intent("pi_b", items=TWO_ITEMS))

        assert first.order_id != second.order_id
        assert await harness.outbox.count() == 2

    @pytest.mark.asyncio
    async def test_fallback_session_clears_cart(self, harness, tb) -> None:
        """The caller's session is used when metadata has none."""
        await harness.cart_store.add_item("sess-fallback", tb, 1)

        result = await harness.materializer.materialize_payment(
            paid_intent(items=TWO_ITEMS, session_id=None), session_id="sess-fallback"
        )

        assert result.cart_cleared is True
        assert await harness.cart_store.get_cart_items("sess-fallback") == []


class TestSinkIsolation:
    """Tests for independent sink delivery."""

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_block_other(self, make_harness, flaky_sink) -> None:
        """A sink that keeps failing leaves the other sink complete."""
        airtable = flaky_sink("airtable", failures=5)
        harness = make_harness(airtable_sink=airtable)

        result = await harness.materializer.materialize_payment(paid_intent(items=TWO_ITEMS))

        assert len(harness.database_sink.records) == 2
        assert airtable.records == []
        assert airtable.calls == 3
        assert result.sinks_complete == {"database": True, "airtable": False}
        status = await harness.materializer.status("pi_paid_1")
        assert status["sinks"]["airtable"]["complete"] is False
        assert "service unavailable" in status["sinks"]["airtable"]["last_error"]
        assert status["sinks"]["database"]["written"] == 2

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, make_harness, flaky_sink) -> None:
        """A sink that recovers within the attempts gets every line."""
        airtable = flaky_sink("airtable", failures=2)
        harness = make_harness(airtable_sink=airtable)

        result = await harness.materializer.materialize_payment(paid_intent(items=TWO_ITEMS))

        assert result.sinks_complete["airtable"] is True
        assert [r.line_number for r in airtable.records] == [1, 2]

    @pytest.mark.asyncio
    async def test_reconcile_completes_pending_sink(self, make_harness, flaky_sink) -> None:
        """Reconciliation writes only the missing lines."""
        airtable = flaky_sink("airtable", failures=5)
        harness = make_harness(airtable_sink=airtable)
        await harness.materializer.materialize_payment(paid_intent(items=TWO_ITEMS))

        drained = await harness.materializer.reconcile()

        assert drained == 1
        assert len(airtable.records) == 2
        assert len(harness.database_sink.records) == 2
        status = await harness.materializer.status("pi_paid_1")
        assert status["sinks"]["airtable"] == {"written": 2, "complete": True, "last_error": None}
        assert status["attempts"] == 2
        assert await harness.materializer.reconcile() == 0

    @pytest.mark.asyncio
    async def test_duplicate_signal_redrains_incomplete_entry(self, make_harness, flaky_sink) -> None:
        """A redelivered signal finishes a partially delivered order."""
        airtable = flaky_sink("airtable", failures=3)
        harness = make_harness(airtable_sink=airtable)
        await harness.materializer.materialize_payment(paid_intent(items=TWO_ITEMS))

        result = await harness.materializer.materialize_payment(paid_intent(items=TWO_ITEMS))

        assert result.duplicate is True
        assert result.sinks_complete == {"database": True, "airtable": True}
        assert len(harness.database_sink.records) == 2

    @pytest.mark.asyncio
    async def test_unknown_reference_has_no_status(self, harness) -> None:
        """Status is None for payments never materialized."""
        assert await harness.materializer.status("pi_missing") is None


class TestCartClearing:
    """Tests for clearing the originating cart."""

    @pytest.mark.asyncio
    async def test_cart_is_cleared_once_per_checkout(self, harness, bpc) -> None:
        """Repeated signals never clear a refilled cart."""
        await harness.cart_store.add_item(SESSION, bpc, 1)
        clear_spy = AsyncMock(wraps=harness.cart_store.clear_cart)
        harness.cart_store.clear_cart = clear_spy

        first = await harness.materializer.materialize_payment(paid_intent(items=TWO_ITEMS))
        await harness.cart_store.add_item(SESSION, bpc, 2)
        second = await harness.materializer.materialize_payment(paid_intent(items=TWO_ITEMS))

        assert first.cart_cleared is True
        assert second.cart_cleared is False
        assert clear_spy.await_count == 1
        assert len(await harness.cart_store.get_cart_items(SESSION)) == 1

    @pytest.mark.asyncio
    async def test_old_payment_never_clears_a_newer_cart(self, harness, bpc, tb) -> None:
        """A later purchase's cart survives a repeated signal for an earlier one."""
        await harness.cart_store.add_item(SESSION, bpc, 1)
        await harness.materializer.materialize_payment(paid_intent("pi_old", items=TWO_ITEMS))
        await harness.cart_store.add_item(SESSION, tb, 3)

        repeated = await harness.materializer.materialize_payment(paid_intent("pi_old", items=TWO_ITEMS))

        assert repeated.duplicate is True
        assert repeated.cart_cleared is False
        items = await harness.cart_store.get_cart_items(SESSION)
        assert [item.quantity for item in items] == [3]

        fresh = await harness.materializer.materialize_payment(paid_intent("pi_new", items=TWO_ITEMS))

        assert fresh.cart_cleared is True
        assert await harness.cart_store.get_cart_items(SESSION) == []

    @pytest.mark.asyncio
    async def test_duplicate_clears_cart_when_first_signal_had_no_session(self, harness, tb) -> None:
        """A later signal carrying the session clears the cart the first could not."""
        await harness.cart_store.add_item("sess-late", tb, 1)
        first = await harness.materializer.materialize_payment(
            paid_intent(items=TWO_ITEMS, session_id=None)
        )

        second = await harness.materializer.materialize_payment(
            paid_intent(items=TWO_ITEMS, session_id=None), session_id="sess-late"
        )

        assert first.cart_cleared is False
        assert second.cart_cleared is True
        assert await harness.cart_store.get_cart_items("sess-late") == []

    @pytest.mark.asyncio
    async def test_cleared_flag_is_per_payment(self, harness, bpc) -> None:
        """Clearing one session's cart does not affect another session."""
        await harness.cart_store.add_item("sess-a", bpc, 1)
        await harness.cart_store.add_item("sess-b", bpc, 1)

        a = await harness.materializer.materialize_payment(
            paid_intent("pi_a", items=TWO_ITEMS, session_id="sess-a")
        )
        b = await harness.materializer.materialize_payment(
            paid_intent("pi_b", items=TWO_ITEMS, session_id="sess-b")
        )

        assert a.cart_cleared is True
        assert b.cart_cleared is True
        assert (await harness.outbox.get("pi_a")).cart_cleared is True
        assert (await harness.outbox.get("pi_b")).cart_cleared is True

    @pytest.mark.asyncio
    async def test_no_session_leaves_carts_alone(self, harness, bpc) -> None:
        """Without any session id no cart is touched."""
        await harness.cart_store.add_item(SESSION, bpc, 1)

        result = await harness.materializer.materialize_payment(
            paid_intent(items=TWO_ITEMS, session_id=None)
        )

        assert result.cart_cleared is False
        assert len(await harness.cart_store.get_cart_items(SESSION)) == 1


class TestRecoveryAfterRestart:
    """Orders resumed from what the sinks already hold."""

    @staticmethod
    def restarted(harness) -> OrderMaterializer:
        """A materializer with an empty outbox over the same sinks."""
        return OrderMaterializer(
            outbox=InMemoryOrderOutbox(),
            sinks=[harness.database_sink, harness.airtable_sink],
            cart_store=harness.cart_store,
            write_attempts=3,
            retry_delay=0,
        )

    @pytest.mark.asyncio
    async def test_redelivered_signal_keeps_order_id(self, harness, tb) -> None:
        """Nothing is written twice and the newer cart is left alone."""
        first = await harness.materializer.materialize_payment(paid_intent(items=TWO_ITEMS))
        await harness.cart_store.add_item(SESSION, tb, 1)

        again = await self.restarted(harness).materialize_payment(paid_intent(items=TWO_ITEMS))

        assert again.duplicate is True
        assert again.order_id == first.order_id
        assert again.sinks_complete == {"database": True, "airtable": True}
        assert again.cart_cleared is False
        assert len(harness.database_sink.records) == 2
        assert len(harness.airtable_sink.records) == 2
        assert len(await harness.cart_store.get_cart_items(SESSION)) == 1

    @pytest.mark.asyncio
    async def test_missing_lines_are_written_under_stored_order_id(
        self, make_harness, flaky_sink
    ) -> None:
        """A sink that missed the order before the restart catches up."""
        airtable = flaky_sink("airtable", failures=5)
        harness = make_harness(airtable_sink=airtable)
        first = await harness.materializer.materialize_payment(paid_intent(items=TWO_ITEMS))

        again = await self.restarted(harness).materialize_payment(paid_intent(items=TWO_ITEMS))

        assert again.order_id == first.order_id
        assert len(harness.database_sink.records) == 2
        assert {r.order_id for r in airtable.records} == {first.order_id}
        assert [r.line_number for r in airtable.records] == [1, 2]


class TestMaterializeCart:
    """Tests for manual payment materialization."""

    @pytest.mark.asyncio
    async def test_live_cart_prices_are_recorded(self, harness, bpc, tb) -> None:
        """Manual orders use the cart's real unit prices."""
        await harness.cart_store.add_item(SESSION, bpc, 1, "10mg")
        await harness.cart_store.add_item(SESSION, tb, 2)
        items = await harness.cart_store.get_cart_items(SESSION)

        result = await harness.materializer.materialize_cart(
            SESSION,
            items,
            CustomerInfo(first_name="Jane", last_name="Doe"),
            "standard",
            "crypto",
            "0xabc",
        )

        assert [r.sales_price for r in result.records] == [Decimal("150.00"), Decimal("60.00")]
        assert order_total(result.records) == Decimal("270.00")
        assert all(r.payment_reference == "0xabc" for r in result.records)
        assert result.cart_cleared is True

    @pytest.mark.asyncio
    async def test_same_reference_is_not_recorded_twice(self, harness, tb) -> None:
        """A reused manual reference returns the existing order."""
        await harness.cart_store.add_item(SESSION, tb, 1)
        items = await harness.cart_store.get_cart_items(SESSION)
        customer = CustomerInfo(first_name="Jane", last_name="Doe")

        first = await harness.materializer.materialize_cart(
            SESSION, items, customer, None, "bank", "WIRE-1"
        )
        second = await harness.materializer.materialize_cart(
            SESSION, items, customer, None, "bank", "WIRE-1"
        )

        assert second.duplicate is True
        assert second.order_id == first.order_id
        assert len(harness.database_sink.records) == 1
