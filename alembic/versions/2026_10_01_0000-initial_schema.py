"""initial schema

Revision ID: 2026_10_01_0000
Revises:
Create Date: 2026-10-01 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '2026_10_01_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial storefront schema."""

    # ========================================================================
    # Create catalog_items table
    # ========================================================================
    op.create_table(
        'catalog_items',
        sa.Column('catalog_key', sa.String(64), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('retail_price_cents', sa.Integer(), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        # Constraints
        sa.CheckConstraint('retail_price_cents >= 0', name='ck_catalog_price_non_negative'),
    )

    # ========================================================================
    # Create payment_requests table
    # ========================================================================
    op.create_table(
        'payment_requests',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('catalog_key', sa.String(64), nullable=False),
        sa.Column('payer_address', sa.String(42), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('fulfilled_hash', sa.String(66), nullable=True),
        sa.Column('paid_cents', sa.BigInteger(), nullable=True),
        sa.Column('fulfilled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        # Constraints
        sa.CheckConstraint('price_cents >= 0', name='ck_payment_price_non_negative'),
        sa.CheckConstraint(
            '(fulfilled_hash IS NULL) = (fulfilled_at IS NULL)',
            name='ck_payment_fulfillment_consistency',
        ),
        sa.ForeignKeyConstraint(
            ['catalog_key'], ['catalog_items.catalog_key'],
            name='fk_payment_requests_catalog_item', ondelete='RESTRICT',
        ),
    )

    # Indexes for payment_requests
    op.create_index('idx_payment_requests_item_payer', 'payment_requests', ['catalog_key', 'payer_address'])
    op.create_index('idx_payment_requests_fulfilled_hash', 'payment_requests', ['fulfilled_hash'])

    # ========================================================================
    # Create spent_nonces table
    # ========================================================================
    op.create_table(
        'spent_nonces',
        sa.Column('address', sa.String(42), primary_key=True),
        sa.Column('nonce', sa.String(256), primary_key=True),
        sa.Column('catalog_key', sa.String(64), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # ========================================================================
    # Create chain_cursors table
    # ========================================================================
    op.create_table(
        'chain_cursors',
        sa.Column('contract_address', sa.String(42), primary_key=True),
        sa.Column('last_block', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        # Constraints
        sa.CheckConstraint('last_block >= 0', name='ck_cursor_block_non_negative'),
    )


def downgrade() -> None:
    """Drop storefront schema."""
    op.drop_table('chain_cursors')
    op.drop_table('spent_nonces')
    op.drop_index('idx_payment_requests_fulfilled_hash', table_name='payment_requests')
    op.drop_index('idx_payment_requests_item_payer', table_name='payment_requests')
    op.drop_table('payment_requests')
    op.drop_table('catalog_items')
