"""Session cart storage.

The cart itself is owned by the catalog side of the storefront; the
checkout only reads items and clears the cart once an order exists.
"""

import asyncio
from itertools import count

import structlog

from storefront.domain.value_objects import CartItem, ProductRef

logger = structlog.get_logger()


class InMemoryCartStore:
    """In-memory cart storage keyed by session id."""

    def __init__(self) -> None:
        """Initialize cart store."""
        self._carts: dict[str, list[CartItem]] = {}
        self._ids = count(1)
        self._lock = asyncio.Lock()

    async def get_cart_items(self, session_id: str) -> list[CartItem]:
        """Get the items of a session's cart.

        Args:
            session_id: Session identifier.

        Returns:
            Cart items in insertion order (empty if no cart).
        """
        async with self._lock:
            return list(self._carts.get(session_id, []))

    async def add_item(
        self,
        session_id: str,
        product: ProductRef,
        quantity: int = 1,
        selected_weight: str | None = None,
    ) -> CartItem:
        """Add a product to a session's cart.

        Adding the same product and weight again increases the quantity.
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")

        async with self._lock:
            items = self._carts.setdefault(session_id, [])
            for index, existing in enumerate(items):
                if existing.product.id == product.id and existing.selected_weight == selected_weight:
                    merged = CartItem(
                        id=existing.id,
                        product=product,
                        quantity=existing.quantity + quantity,
                        selected_weight=selected_weight,
                    )
                    items[index] = merged
                    return merged

            item = CartItem(
                id=next(self._ids),
                product=product,
                quantity=quantity,
                selected_weight=selected_weight,
            )
            items.append(item)
            return item

    async def clear_cart(self, session_id: str) -> None:
        """Remove every item from a session's cart."""
        async with self._lock:
            removed = len(self._carts.pop(session_id, []))
        logger.info("Cart cleared", session_id=session_id, removed_items=removed)


# Global store instance
_cart_store: InMemoryCartStore | None = None


def get_cart_store() -> InMemoryCartStore:
    """Get the cart store singleton.

    Returns:
        InMemoryCartStore instance.
    """
    global _cart_store
    if _cart_store is None:
        _cart_store = InMemoryCartStore()
    return _cart_store
