"""Tests for the compact order summary carried in intent metadata."""

import json
from decimal import Decimal

from storefront.domain.order_summary import (
    METADATA_VALUE_LIMIT,
    SummaryItem,
    build_order_summary,
    parse_order_summary,
)


class TestBuildOrderSummary:
    """Tests for build_order_summary."""

    def test_small_cart_keeps_full_names(self) -> None:
        """A short cart is encoded with full item names."""
        encoded = build_order_summary(
            "Jane Doe",
            "jane@example.com",
            [
                SummaryItem(id="1", name="BPC-157", qty=2, weight="5mg"),
                SummaryItem(id="2", name="TB-500", qty=1),
            ],
        )
        data = json.loads(encoded)
        assert data["customer"] == "Jane Doe"
        assert data["email"] == "jane@example.com"
        assert data["items"] == [
            {"id": "1", "name": "BPC-157", "qty": 2, "weight": "5mg"},
            {"id": "2", "name": "TB-500", "qty": 1},
        ]

    def test_long_names_are_shortened_then_dropped(self) -> None:
        """Encoding degrades until it fits the metadata limit."""
        items = [SummaryItem(id=str(i), name="X" * 60, qty=1) for i in range(8)]
        encoded = build_order_summary("Jane Doe", None, items)
        assert len(encoded) <= METADATA_VALUE_LIMIT
        data = json.loads(encoded)
        assert len(data["items"]) == 8
        assert all(len(item.get("name", "")) <= 24 for item in data["items"])

    def test_huge_cart_falls_back_to_count(self) -> None:
        """When even ids do not fit, only the item count is kept."""
        items = [SummaryItem(id=f"product-{i:04d}", name=None, qty=1) for i in range(60)]
        encoded = build_order_summary("Jane Doe", "jane@example.com", items)
        assert len(encoded) <= METADATA_VALUE_LIMIT
        data = json.loads(encoded)
        assert "items" not in data
        assert data["count"] == 60


class TestParseOrderSummary:
    """Tests for parse_order_summary."""

    def test_parses_summary_items(self) -> None:
        """Items are read from orderSummary."""
        summary = parse_order_summary(
            {
                "orderSummary": json.dumps(
                    {
                        "customer": "Jane Doe",
                        "email": "jane@example.com",
                        "items": [{"id": 7, "name": "BPC-157", "qty": 3, "weight": "10mg"}],
                    }
                )
            }
        )
        assert summary is not None
        assert summary.customer == "Jane Doe"
        assert summary.items[0].id == "7"
        assert summary.items[0].qty == 3
        assert summary.items[0].weight == "10mg"
        assert summary.total_quantity == 3

    def test_legacy_products_key_is_accepted(self) -> None:
        """The legacy products list carries quantity and price."""
        summary = parse_order_summary(
            {"products": json.dumps([{"id": 1, "name": "TB-500", "quantity": 2, "price": 60}])}
        )
        assert summary is not None
        assert summary.items[0].qty == 2
        assert summary.items[0].price == Decimal("60")

    def test_malformed_metadata_yields_none(self) -> None:
        """Unparseable summaries mean no structured items."""
        assert parse_order_summary({"orderSummary": "{not json"}) is None
        assert parse_order_summary({}) is None

    def test_invalid_quantity_defaults_to_one(self) -> None:
        """Non-positive or non-numeric quantities count as one."""
        summary = parse_order_summary(
            {"orderSummary": json.dumps({"items": [{"id": 1, "qty": "many"}, {"id": 2, "qty": 0}]})}
        )
        assert [item.qty for item in summary.items] == [1, 1]

    def test_count_only_summary_has_no_items(self) -> None:
        """A degraded summary keeps customer data without items."""
        summary = parse_order_summary(
            {"orderSummary": json.dumps({"customer": "Jane Doe", "email": "", "count": 60})}
        )
        assert summary is not None
        assert summary.items == []
        assert summary.customer == "Jane Doe"
