"""Initial inventory reconciliation schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates:
- warehouses, categories, products reference tables
- stock_balances and stock_movements
- documents and document_items
- inventories, inventory_items and inventory_adjustments
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

inventory_status = sa.Enum("DRAFT", "IN_PROGRESS", "COMPLETED", "APPROVED", name="inventorystatus")
adjustment_kind = sa.Enum("SURPLUS", "SHORTAGE", name="adjustmentkind")
document_type = sa.Enum("RECEIPT", "WRITEOFF", "TRANSFER", name="documenttype")
document_status = sa.Enum("DRAFT", "APPROVED", "CANCELLED", name="documentstatus")


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # Reference data
    op.create_table(
        'warehouses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False, unique=True),
        sa.Column('address', sa.String(500), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False, unique=True),
        *_timestamps(),
    )

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False, index=True),
        sa.Column('article', sa.String(50), nullable=True, index=True),
        sa.Column('category_id', sa.Integer(),
                  sa.ForeignKey('categories.id', ondelete='SET NULL'),
                  nullable=True, index=True),
        sa.Column('unit', sa.String(20), nullable=False, server_default='pcs'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    # Documents
    op.create_table(
        'documents',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('number', sa.String(30), nullable=False, unique=True),
        sa.Column('type', document_type, nullable=False, index=True),
        sa.Column('status', document_status, nullable=False, index=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('warehouse_from_id', sa.Integer(), sa.ForeignKey('warehouses.id'), nullable=True),
        sa.Column('warehouse_to_id', sa.Integer(), sa.ForeignKey('warehouses.id'), nullable=True),
        sa.Column('total_amount', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('notes', sa.String(1000), nullable=True),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('approved_by_id', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'document_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('document_id', sa.Integer(),
                  sa.ForeignKey('documents.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('total', sa.Numeric(14, 2), nullable=False),
    )

    # Stock
    op.create_table(
        'stock_balances',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('warehouse_id', sa.Integer(),
                  sa.ForeignKey('warehouses.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('product_id', sa.Integer(),
                  sa.ForeignKey('products.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('avg_price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('warehouse_id', 'product_id', name='uq_balance_warehouse_product'),
    )

    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ts', sa.DateTime(timezone=True), server_default=sa.func.now(),
                  nullable=False, index=True),
        sa.Column('warehouse_id', sa.Integer(),
                  sa.ForeignKey('warehouses.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('product_id', sa.Integer(),
                  sa.ForeignKey('products.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('document_id', sa.Integer(),
                  sa.ForeignKey('documents.id', ondelete='SET NULL'),
                  nullable=True, index=True),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
    )

    # Inventories
    op.create_table(
        'inventories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('number', sa.String(30), nullable=False, unique=True),
        sa.Column('warehouse_id', sa.Integer(), sa.ForeignKey('warehouses.id'),
                  nullable=False, index=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('status', inventory_status, nullable=False, index=True),
        sa.Column('responsible_person_id', sa.Integer(), nullable=True, index=True),
        sa.Column('notes', sa.String(1000), nullable=True),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_by_id', sa.Integer(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_by_id', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_by_id', sa.Integer(), nullable=True),
        sa.Column('adjustments_created_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'inventory_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('inventory_id', sa.Integer(),
                  sa.ForeignKey('inventories.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'),
                  nullable=False, index=True),
        sa.Column('expected_quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('actual_quantity', sa.Numeric(12, 3), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('notes', sa.String(500), nullable=True),
        sa.Column('counted_by_id', sa.Integer(), nullable=True),
        sa.Column('counted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('inventory_id', 'product_id', name='uq_inventory_item_product'),
    )

    op.create_table(
        'inventory_adjustments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('inventory_id', sa.Integer(), sa.ForeignKey('inventories.id'),
                  nullable=False, index=True),
        sa.Column('kind', adjustment_kind, nullable=False),
        sa.Column('document_id', sa.Integer(), sa.ForeignKey('documents.id'), nullable=False),
        sa.Column('document_number', sa.String(30), nullable=False),
        sa.Column('total_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('inventory_id', 'kind', name='uq_inventory_adjustment_kind'),
    )


def downgrade() -> None:
    op.drop_table('inventory_adjustments')
    op.drop_table('inventory_items')
    op.drop_table('inventories')
    op.drop_table('stock_movements')
    op.drop_table('stock_balances')
    op.drop_table('document_items')
    op.drop_table('documents')
    op.drop_table('products')
    op.drop_table('categories')
    op.drop_table('warehouses')

    bind = op.get_bind()
    for enum in (adjustment_kind, inventory_status, document_status, document_type):
        enum.drop(bind, checkfirst=True)
