"""Read side of the ``order_records`` table.

Order lines are stored one row per line; every query here groups them
back into orders by ``order_id``, newest order first.
"""

from collections.abc import Sequence

from sqlalchemy import ColumnElement, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.infrastructure.models import OrderRecordModel


class OrderRecordRepository:
    """Queries over materialized order lines.

    Example usage:
        async with get_session_factory()() as session:
            repo = OrderRecordRepository(session)
            orders = await repo.list_orders(limit=50, search="doe")
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    @staticmethod
    def _search_condition(search: str | None) -> ColumnElement[bool] | None:
        term = (search or "").strip()
        if not term:
            return None
        pattern = f"%{term}%"
        return or_(
            OrderRecordModel.order_id.ilike(pattern),
            OrderRecordModel.first_name.ilike(pattern),
            OrderRecordModel.last_name.ilike(pattern),
            OrderRecordModel.email.ilike(pattern),
            OrderRecordModel.product_name.ilike(pattern),
            OrderRecordModel.payment_reference.ilike(pattern),
        )

    async def list_orders(
        self,
        limit: int = 50,
        offset: int = 0,
        search: str | None = None,
    ) -> list[list[OrderRecordModel]]:
        """Orders with all their lines, newest first.

        Args:
            limit: Maximum number of orders.
            offset: Orders to skip.
            search: Case-insensitive match on order id, customer name,
                email, product name or payment reference. An order
                matches if any of its lines does.

        Returns:
            One list of lines (in line order) per order.
        """
        placed_at = func.max(OrderRecordModel.created_at).label("placed_at")
        query = select(OrderRecordModel.order_id, placed_at).group_by(OrderRecordModel.order_id)

        condition = self._search_condition(search)
        if condition is not None:
            query = query.where(condition)

        query = query.order_by(desc(placed_at), desc(OrderRecordModel.order_id))
        query = query.limit(limit).offset(offset)

        order_ids = [row.order_id for row in await self.session.execute(query)]
        if not order_ids:
            return []

        lines = await self._lines_of(order_ids)
        grouped: dict[str, list[OrderRecordModel]] = {order_id: [] for order_id in order_ids}
        for line in lines:
            grouped[line.order_id].append(line)
        return list(grouped.values())

    async def count_orders(self, search: str | None = None) -> int:
        """Number of distinct orders, optionally filtered by search."""
        query = select(func.count(func.distinct(OrderRecordModel.order_id)))
        condition = self._search_condition(search)
        if condition is not None:
            query = query.where(condition)
        return await self.session.scalar(query) or 0

    async def get_order(self, order_id: str) -> list[OrderRecordModel]:
        """Lines of one order, or an empty list if it does not exist."""
        return list(await self._lines_of([order_id]))

    async def _lines_of(self, order_ids: list[str]) -> Sequence[OrderRecordModel]:
        result = await self.session.execute(
            select(OrderRecordModel)
            .where(OrderRecordModel.order_id.in_(order_ids))
            .order_by(OrderRecordModel.order_id, OrderRecordModel.line_number)
        )
        return result.scalars().all()
