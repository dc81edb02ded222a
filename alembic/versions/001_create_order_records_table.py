"""Create order_records table.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create order_records table."""
    op.create_table(
        'order_records',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('order_id', sa.String(40), nullable=False, index=True),
        sa.Column('line_number', sa.Integer(), nullable=False),
        # Product
        sa.Column('product_id', sa.String(100), nullable=False),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('selected_weight', sa.String(50), nullable=True),
        sa.Column('sales_price', sa.Numeric(10, 2), nullable=False),
        # Customer
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('address', sa.String(255), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(100), nullable=True),
        sa.Column('zip', sa.String(20), nullable=True),
        # Payment
        sa.Column('shipping_method', sa.String(50), nullable=True),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('payment_reference', sa.String(100), nullable=False, index=True),
        sa.Column('payment_details', sa.Text(), nullable=True),
        sa.Column('affiliate_code', sa.String(100), nullable=True),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    # A payment reference materializes each line at most once
    op.create_unique_constraint(
        'uq_order_records_payment_line',
        'order_records',
        ['payment_reference', 'line_number'],
    )


def downgrade() -> None:
    """Drop order_records table."""
    op.drop_table('order_records')
