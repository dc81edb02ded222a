"""Order outbox.

Materialized orders are recorded here, keyed by payment reference,
before they are written to the sinks. The outbox remembers which lines
each sink has accepted, so retries only write what is missing and a
repeated completion signal for the same payment finds the existing
order instead of creating a new one. It also remembers whether the
payment's cart has been cleared, so a late signal for an old payment
never touches a newer cart.

Entries live in process memory. After a restart the materializer
rebuilds a missing entry from what the sinks already hold (see
``OrderMaterializer``), so a redelivered signal keeps its order id.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from storefront.domain.entities import OrderRecord

logger = structlog.get_logger()


@dataclass
class OutboxEntry:
    """One materialized order awaiting (or done with) sink delivery.

    Attributes:
        payment_reference: Idempotency key of the order.
        order_id: Order id shared by all records.
        records: Order lines, in line-number order.
        session_id: Session whose cart produced the order, if known.
        writes: Sink name -> line number -> sink record id.
        errors: Sink name -> last error message.
        attempts: Number of drain passes made.
        cart_cleared: Whether the cart was cleared for this payment.
        recovered: True if rebuilt from lines a sink already held.
    """

    payment_reference: str
    order_id: str
    records: list[OrderRecord]
    session_id: str | None = None
    writes: dict[str, dict[int, str]] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    attempts: int = 0
    cart_cleared: bool = False
    recovered: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    drain_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def pending_records(self, sink: str) -> list[OrderRecord]:
        """Records the sink has not accepted yet."""
        written = self.writes.get(sink, {})
        return [r for r in self.records if r.line_number not in written]

    def is_complete_for(self, sink: str) -> bool:
        return not self.pending_records(sink)

    def is_complete(self, sinks: list[str]) -> bool:
        return all(self.is_complete_for(sink) for sink in sinks)

    def to_status(self, sinks: list[str]) -> dict[str, Any]:
        """Summarize delivery state per sink."""
        return {
            "payment_reference": self.payment_reference,
            "order_id": self.order_id,
            "record_count": len(self.records),
            "attempts": self.attempts,
            "cart_cleared": self.cart_cleared,
            "recovered": self.recovered,
            "created_at": self.created_at.isoformat(),
            "sinks": {
                sink: {
                    "written": len(self.writes.get(sink, {})),
                    "complete": self.is_complete_for(sink),
                    "last_error": self.errors.get(sink),
                }
                for sink in sinks
            },
        }


class InMemoryOrderOutbox:
    """In-memory outbox keyed by payment reference."""

    def __init__(self) -> None:
        """Initialize outbox."""
        self._entries: dict[str, OutboxEntry] = {}
        self._lock = asyncio.Lock()

    async def get(self, payment_reference: str) -> OutboxEntry | None:
        """Get the entry for a payment reference."""
        async with self._lock:
            return self._entries.get(payment_reference)

    async def add_if_absent(self, entry: OutboxEntry) -> tuple[OutboxEntry, bool]:
        """Add an entry unless one exists for the same payment reference.

        Returns:
            The stored entry and whether it was newly added.
        """
        async with self._lock:
            existing = self._entries.get(entry.payment_reference)
            if existing is not None:
                return existing, False
            self._entries[entry.payment_reference] = entry
            logger.info(
                "Order added to outbox",
                payment_reference=entry.payment_reference,
                order_id=entry.order_id,
                record_count=len(entry.records),
            )
            return entry, True

    async def record_write(
        self, payment_reference: str, sink: str, line_number: int, record_id: str
    ) -> None:
        async with self._lock:
            entry = self._entries[payment_reference]
            entry.writes.setdefault(sink, {})[line_number] = record_id
            entry.errors.pop(sink, None)

    async def record_error(self, payment_reference: str, sink: str, message: str) -> None:
        async with self._lock:
            self._entries[payment_reference].errors[sink] = message

    async def mark_cart_cleared(self, payment_reference: str) -> bool:
        """Flip the entry's cart-cleared flag.

        Returns:
            True only for the first caller; False if already cleared or
            the reference is unknown.
        """
        async with self._lock:
            entry = self._entries.get(payment_reference)
            if entry is None or entry.cart_cleared:
                return False
            entry.cart_cleared = True
            return True

    async def incomplete(self, sinks: list[str]) -> list[OutboxEntry]:
        """Entries with at least one sink still missing lines."""
        async with self._lock:
            return [e for e in self._entries.values() if not e.is_complete(sinks)]

    async def count(self) -> int:
        async with self._lock:
            return len(self._entries)


# Global outbox instance
_order_outbox: InMemoryOrderOutbox | None = None


def get_order_outbox() -> InMemoryOrderOutbox:
    """Get the outbox singleton.

    Returns:
        InMemoryOrderOutbox instance.
    """
    global _order_outbox
    if _order_outbox is None:
        _order_outbox = InMemoryOrderOutbox()
    return _order_outbox
