"""Checkout funnel tracking.

Mirrors checkout progress into the Airtable checkouts table. Tracking
is informational: every failure is logged and swallowed.
"""

import json
from datetime import datetime, timezone
from typing import Any

import structlog

from storefront.domain.state_machines import CheckoutStep
from storefront.domain.value_objects import CartItem, CartTotals, PersonalInfo, ShippingInfo
from storefront.infrastructure.airtable_client import (
    AirtableClient,
    AirtableError,
    field_equals,
    get_airtable_client,
)
from storefront.infrastructure.config import settings

logger = structlog.get_logger()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def cart_items_field(items: list[CartItem]) -> str:
    """Serialize cart lines for the ``cartitems`` column."""
    return json.dumps(
        [
            {
                "id": str(item.product_id),
                "name": item.product.name,
                "qty": item.quantity,
                "weight": item.selected_weight,
                "price": float(item.unit_price),
            }
            for item in items
        ]
    )


class CheckoutTracker:
    """Writes checkout progress rows to Airtable."""

    def __init__(self, client: AirtableClient | None, table: str | None = None) -> None:
        """Initialize tracker.

        Args:
            client: Airtable client, or None to disable tracking.
            table: Checkouts table name.
        """
        self.client = client
        self.table = table or settings.airtable_checkouts_table
        self._record_ids: dict[str, str] = {}

    @property
    def enabled(self) -> bool:
        return self.client is not None and self.client.is_configured

    async def start(self, checkout_id: str, session_id: str) -> None:
        """Create the tracking row for a new checkout."""
        if not self.enabled:
            logger.debug("Checkout tracking disabled", checkout_id=checkout_id)
            return
        now = _now_iso()
        fields = {
            "checkoutid": checkout_id,
            "sessionid": session_id,
            "status": CheckoutStep.STARTED.value,
            "created at": now,
            "updated at": now,
        }
        try:
            self._record_ids[checkout_id] = await self.client.create_record(self.table, fields)
        except AirtableError as e:
            logger.warning("Checkout tracking create failed", checkout_id=checkout_id, error=e.message)

    async def update(
        self,
        checkout_id: str,
        step: CheckoutStep,
        personal_info: PersonalInfo | None = None,
        shipping_info: ShippingInfo | None = None,
        totals: CartTotals | None = None,
        items: list[CartItem] | None = None,
    ) -> None:
        """Record a step change with whatever data the step collected."""
        fields: dict[str, Any] = {"status": step.value, "updated at": _now_iso()}
        if personal_info is not None:
            fields.update(
                {
                    "first name": personal_info.first_name,
                    "last name": personal_info.last_name,
                    "email": personal_info.email or "",
                    "phone": personal_info.phone or "",
                }
            )
        if shipping_info is not None:
            fields.update(
                {
                    "address": shipping_info.address,
                    "city": shipping_info.city,
                    "state": shipping_info.state,
                    "zip": shipping_info.zip,
                    "shippingmethod": shipping_info.shipping_method,
                }
            )
        if totals is not None:
            fields["totalamount"] = float(totals.total)
        if items is not None:
            fields["cartitems"] = cart_items_field(items)
        await self._patch(checkout_id, fields)

    async def mark_completed(self, checkout_id: str) -> None:
        await self._patch(
            checkout_id,
            {"status": CheckoutStep.COMPLETED.value, "updated at": _now_iso()},
        )

    async def mark_abandoned(self, checkout_id: str) -> None:
        await self._patch(
            checkout_id,
            {"status": CheckoutStep.ABANDONED.value, "updated at": _now_iso()},
        )

    async def _locate(self, checkout_id: str) -> str | None:
        record_id = self._record_ids.get(checkout_id)
        if record_id:
            return record_id
        record = await self.client.find_record(self.table, field_equals("checkoutid", checkout_id))
        if record is None:
            return None
        self._record_ids[checkout_id] = record["id"]
        return record["id"]

    async def _patch(self, checkout_id: str, fields: dict[str, Any]) -> None:
        if not self.enabled:
            return
        try:
            record_id = await self._locate(checkout_id)
            if record_id is None:
                logger.warning("Checkout tracking row not found", checkout_id=checkout_id)
                return
            await self.client.update_record(self.table, record_id, fields)
        except AirtableError as e:
            logger.warning(
                "Checkout tracking update failed",
                checkout_id=checkout_id,
                status=fields.get("status"),
                error=e.message,
            )


# Global tracker instance
_checkout_tracker: CheckoutTracker | None = None


def get_checkout_tracker() -> CheckoutTracker:
    """Get the checkout tracker singleton.

    Returns:
        CheckoutTracker instance.
    """
    global _checkout_tracker
    if _checkout_tracker is None:
        _checkout_tracker = CheckoutTracker(get_airtable_client())
    return _checkout_tracker
