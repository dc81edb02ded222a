"""Compact order summary carried in payment intent metadata.

Gateway metadata values are limited to 500 characters, so the summary
degrades in stages when a cart is large: shortened names, then no
names, then no item list at all. Parsing also understands the legacy
``products`` metadata key, which carried per-item prices.
"""

import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

METADATA_VALUE_LIMIT = 500
SHORT_NAME_LENGTH = 24

ORDER_SUMMARY_KEY = "orderSummary"
LEGACY_PRODUCTS_KEY = "products"


@dataclass(frozen=True)
class SummaryItem:
    """One cart line as recorded in metadata."""

    id: str
    name: str | None
    qty: int
    weight: str | None = None
    price: Decimal | None = None


@dataclass(frozen=True)
class OrderSummary:
    """Parsed order summary."""

    customer: str | None = None
    email: str | None = None
    items: list[SummaryItem] = field(default_factory=list)

    @property
    def total_quantity(self) -> int:
        return sum(item.qty for item in self.items)


def _dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"))


def _item_payload(item: SummaryItem, name_mode: str) -> dict[str, Any]:
    payload: dict[str, Any] = {"id": item.id}
    if name_mode == "full" and item.name:
        payload["name"] = item.name
    elif name_mode == "short" and item.name:
        payload["name"] = item.name[:SHORT_NAME_LENGTH]
    payload["qty"] = item.qty
    if item.weight:
        payload["weight"] = item.weight
    return payload


def build_order_summary(
    customer: str | None,
    email: str | None,
    items: list[SummaryItem],
    limit: int = METADATA_VALUE_LIMIT,
) -> str:
    """Encode the cart as a compact JSON summary that fits in ``limit``.

    Args:
        customer: Customer full name.
        email: Customer email.
        items: Cart lines.
        limit: Maximum encoded length.

    Returns:
        JSON string no longer than ``limit``.
    """
    head: dict[str, Any] = {
        "customer": (customer or "")[:100],
        "email": (email or "")[:100],
    }

    for name_mode in ("full", "short", "none"):
        encoded = _dumps({**head, "items": [_item_payload(i, name_mode) for i in items]})
        if len(encoded) <= limit:
            return encoded

    return _dumps({**head, "count": len(items)})[:limit]


def _parse_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _parse_quantity(value: Any) -> int:
    try:
        qty = int(value)
    except (TypeError, ValueError):
        return 1
    return qty if qty > 0 else 1


def _parse_items(raw: Any, qty_key: str) -> list[SummaryItem]:
    if not isinstance(raw, list):
        return []
    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        product_id = entry.get("id")
        items.append(
            SummaryItem(
                id=str(product_id) if product_id is not None else "unknown",
                name=entry.get("name"),
                qty=_parse_quantity(entry.get(qty_key, entry.get("qty", 1))),
                weight=entry.get("weight") or entry.get("selectedWeight"),
                price=_parse_decimal(entry.get("price")),
            )
        )
    return items


def _loads(value: str | None) -> Any:
    if not value:
        return None
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return None


def parse_order_summary(metadata: dict[str, str]) -> OrderSummary | None:
    """Read the order summary from payment intent metadata.

    Args:
        metadata: Intent metadata.

    Returns:
        Parsed summary, or None when neither the summary nor the legacy
        product list is present and well formed. The summary may have no
        items when only customer details survived.
    """
    summary = _loads(metadata.get(ORDER_SUMMARY_KEY))
    legacy = _loads(metadata.get(LEGACY_PRODUCTS_KEY))

    if not isinstance(summary, dict) and not isinstance(legacy, list):
        return None

    customer = email = None
    items: list[SummaryItem] = []
    if isinstance(summary, dict):
        customer = summary.get("customer") or None
        email = summary.get("email") or None
        items = _parse_items(summary.get("items"), qty_key="qty")

    if not items and isinstance(legacy, list):
        items = _parse_items(legacy, qty_key="quantity")

    return OrderSummary(customer=customer, email=email, items=items)
