"""SQLAlchemy models for database tables.

Provides the ORM model for materialized order line records.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from storefront.infrastructure.database import Base


# ============================================================================
# Order Record Model
# ============================================================================


class OrderRecordModel(Base):
    """One line item of a materialized order.

    All lines of a purchase share ``order_id``. The pair
    (payment_reference, line_number) is unique so that a repeated
    completion signal can never insert the same line twice.
    """

    __tablename__ = "order_records"
    __table_args__ = (
        UniqueConstraint(
            "payment_reference",
            "line_number",
            name="uq_order_records_payment_line",
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    order_id = Column(String(40), nullable=False, index=True)
    line_number = Column(Integer, nullable=False)

    # Product
    product_id = Column(String(100), nullable=False)
    product_name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    selected_weight = Column(String(50), nullable=True)
    sales_price = Column(Numeric(10, 2), nullable=False)

    # Customer
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    zip = Column(String(20), nullable=True)

    # Payment
    shipping_method = Column(String(50), nullable=True)
    payment_method = Column(String(20), nullable=False)
    payment_reference = Column(String(100), nullable=False, index=True)
    payment_details = Column(Text, nullable=True)
    affiliate_code = Column(String(100), nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return (
            f"<OrderRecordModel(order_id={self.order_id}, "
            f"line={self.line_number}, product={self.product_id})>"
        )
