"""initial kardex schema

Revision ID: 20250901_initial
Revises:
Create Date: 2025-09-01 00:00:00.000000

Creates the document / inventory schema:
- reference data: warehouses, products, barcodes, taxes, product_taxes,
  document_types, application_settings
- documents, document_items, document_item_taxes, document_numbers
- stocks, kardex, kardex_history, counters

Optional columns (idempotency key, client snapshot, product snapshots) come
in 20251002_optional_document_columns.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20250901_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    # ============================================================================
    # Reference data
    # ============================================================================
    op.create_table(
        'warehouses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=True),
        sa.Column('measurement_unit', sa.String(length=32), nullable=True),
        sa.Column('price', sa.Numeric(14, 4), nullable=False),
        sa.Column('cost', sa.Numeric(14, 4), nullable=False),
        sa.Column('last_purchase_price', sa.Numeric(14, 4), nullable=False),
        sa.Column('is_tax_inclusive_price', sa.Boolean(), nullable=False),
        sa.Column('is_service', sa.Boolean(), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), nullable=False),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_code', 'products', ['code'])

    op.create_table(
        'barcodes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('value', sa.String(length=64), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'value', name='uq_barcodes_product_value'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_barcodes_product_id', 'barcodes', ['product_id'])
    op.create_index('ix_barcodes_value', 'barcodes', ['value'])

    op.create_table(
        'taxes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('rate', sa.Numeric(8, 4), nullable=False),
        sa.Column('is_fixed', sa.Boolean(), nullable=False),
        sa.Column('is_tax_on_total', sa.Boolean(), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'product_taxes',
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('tax_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['tax_id'], ['taxes.id']),
        sa.PrimaryKeyConstraint('product_id', 'tax_id')
    )

    op.create_table(
        'document_types',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=16), nullable=True),
        sa.Column('warehouse_id', sa.Integer(), nullable=True),
        sa.Column('stock_direction', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_document_types_warehouse_id', 'document_types', ['warehouse_id'])

    op.create_table(
        'application_settings',
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('organization_name', sa.String(length=255), nullable=True),
        sa.Column('currency_symbol', sa.String(length=8), nullable=False),
        sa.Column('tax_percentage', sa.Numeric(8, 4), nullable=False),
        sa.Column('allow_negative_stock', sa.Boolean(), nullable=True),
        sa.Column('default_warehouse_id', sa.Integer(), nullable=True),
        sa.Column('last_modified_by', sa.Integer(), nullable=True),
        sa.Column('last_modified_date', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['default_warehouse_id'], ['warehouses.id']),
        sa.PrimaryKeyConstraint('company_id')
    )

    # ============================================================================
    # Documents
    # ============================================================================
    op.create_table(
        'documents',
        sa.Column('id', sa.Integer(), autoincrement=False, nullable=False),
        sa.Column('number', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('order_number', sa.String(length=64), nullable=True),
        sa.Column('document_type_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('stock_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('total', sa.Numeric(14, 2), nullable=False),
        sa.Column('discount', sa.Numeric(14, 4), nullable=False),
        sa.Column('discount_type', sa.Integer(), nullable=False),
        sa.Column('paid_status', sa.Integer(), nullable=False),
        sa.Column('reference_document_number', sa.String(length=128), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('internal_note', sa.Text(), nullable=True),
        sa.Column('is_clocked_out', sa.Boolean(), nullable=False),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['document_type_id'], ['document_types.id']),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_documents_number', 'documents', ['number'])
    op.create_index('ix_documents_customer_id', 'documents', ['customer_id'])
    op.create_index('ix_documents_is_clocked_out', 'documents', ['is_clocked_out'])
    op.create_index('ix_documents_type_warehouse', 'documents', ['document_type_id', 'warehouse_id'])

    op.create_table(
        'document_items',
        sa.Column('id', sa.Integer(), autoincrement=False, nullable=False),
        sa.Column('document_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('expected_quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('price', sa.Numeric(14, 4), nullable=False),
        sa.Column('price_before_tax', sa.Numeric(14, 4), nullable=False),
        sa.Column('discount', sa.Numeric(14, 4), nullable=False),
        sa.Column('discount_type', sa.Integer(), nullable=False),
        sa.Column('product_cost', sa.Numeric(14, 4), nullable=False),
        sa.Column('price_before_tax_after_discount', sa.Numeric(14, 2), nullable=False),
        sa.Column('price_after_discount', sa.Numeric(14, 2), nullable=False),
        sa.Column('total', sa.Numeric(14, 2), nullable=False),
        sa.Column('total_after_document_discount', sa.Numeric(14, 2), nullable=False),
        sa.ForeignKeyConstraint(['document_id'], ['documents.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_document_items_document_id', 'document_items', ['document_id'])
    op.create_index('ix_document_items_product_id', 'document_items', ['product_id'])
    op.create_index('ix_document_items_document_id_id', 'document_items', ['document_id', 'id'])

    op.create_table(
        'document_item_taxes',
        sa.Column('document_item_id', sa.Integer(), nullable=False),
        sa.Column('tax_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.ForeignKeyConstraint(['document_item_id'], ['document_items.id']),
        sa.ForeignKeyConstraint(['tax_id'], ['taxes.id']),
        sa.PrimaryKeyConstraint('document_item_id', 'tax_id')
    )

    op.create_table(
        'document_numbers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('last_number', sa.Integer(), nullable=False),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type_id', 'warehouse_id', 'year', 'month',
                            name='uq_document_numbers_type_warehouse_period'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # Inventory
    # ============================================================================
    op.create_table(
        'stocks',
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id']),
        sa.PrimaryKeyConstraint('product_id', 'warehouse_id')
    )

    op.create_table(
        'kardex',
        sa.Column('id', sa.Integer(), autoincrement=False, nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=True),
        sa.Column('document_id', sa.Integer(), nullable=True),
        sa.Column('document_item_id', sa.Integer(), nullable=True),
        sa.Column('document_number', sa.String(length=64), nullable=True),
        sa.Column('date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('previous_balance', sa.Numeric(14, 3), nullable=True),
        sa.Column('balance', sa.Numeric(14, 3), nullable=False),
        sa.Column('unit_cost', sa.Numeric(14, 4), nullable=True),
        sa.Column('total_cost', sa.Numeric(14, 2), nullable=True),
        sa.Column('unit_price', sa.Numeric(14, 4), nullable=True),
        sa.Column('total_price', sa.Numeric(14, 2), nullable=True),
        sa.Column('total_price_after_discount', sa.Numeric(14, 2), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.CheckConstraint("type IN ('ENTRADA', 'SALIDA', 'AJUSTE')", name='ck_kardex_type'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id']),
        sa.ForeignKeyConstraint(['document_id'], ['documents.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_kardex_product_id', 'kardex', ['product_id'])
    op.create_index('ix_kardex_warehouse_id', 'kardex', ['warehouse_id'])
    op.create_index('ix_kardex_document_id', 'kardex', ['document_id'])
    op.create_index('ix_kardex_product_warehouse_date', 'kardex', ['product_id', 'warehouse_id', 'date'])

    op.create_table(
        'kardex_history',
        sa.Column('id', sa.Integer(), autoincrement=False, nullable=False),
        sa.Column('kardex_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('previous_balance', sa.Numeric(14, 3), nullable=True),
        sa.Column('new_balance', sa.Numeric(14, 3), nullable=False),
        sa.Column('modified_by', sa.Integer(), nullable=False),
        sa.Column('modified_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['kardex_id'], ['kardex.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_kardex_history_kardex_id', 'kardex_history', ['kardex_id'])
    op.create_index('ix_kardex_history_product_id', 'kardex_history', ['product_id'])

    op.create_table(
        'counters',
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('value', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('name')
    )


def downgrade():
    for table in (
        'counters', 'kardex_history', 'kardex', 'stocks',
        'document_numbers', 'document_item_taxes', 'document_items', 'documents',
        'application_settings', 'document_types', 'product_taxes', 'taxes',
        'barcodes', 'products', 'warehouses',
    ):
        op.drop_table(table)
