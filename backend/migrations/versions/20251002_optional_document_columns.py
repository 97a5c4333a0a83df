"""optional document columns

Revision ID: 20251002_optional_document_columns
Revises: 20250901_initial
Create Date: 2025-10-02 00:00:00.000000

Adds the columns the write path treats as optional
(kardex.services.schema_compat.OPTIONAL_COLUMNS):

- documents.idempotency_key (unique): safe retries of document creation
- documents.client_id / client_name_snapshot
- document_items.*_snapshot: product facts frozen at draft time

Databases still on 20250901_initial keep working; the write path drops these
keys until this revision is applied.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20251002_optional_document_columns'
down_revision = '20250901_initial'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('documents', schema=None) as batch_op:
        batch_op.add_column(sa.Column('idempotency_key', sa.String(length=128), nullable=True))
        batch_op.add_column(sa.Column('client_id', sa.Integer(), nullable=True))
        batch_op.add_column(sa.Column('client_name_snapshot', sa.String(length=255), nullable=True))
        batch_op.create_unique_constraint('uq_documents_idempotency_key', ['idempotency_key'])

    with op.batch_alter_table('document_items', schema=None) as batch_op:
        batch_op.add_column(sa.Column('product_name_snapshot', sa.String(length=255), nullable=True))
        batch_op.add_column(sa.Column('product_code_snapshot', sa.String(length=64), nullable=True))
        batch_op.add_column(sa.Column('measurement_unit_snapshot', sa.String(length=32), nullable=True))
        batch_op.add_column(sa.Column('barcode_snapshot', sa.String(length=64), nullable=True))


def downgrade():
    with op.batch_alter_table('document_items', schema=None) as batch_op:
        batch_op.drop_column('barcode_snapshot')
        batch_op.drop_column('measurement_unit_snapshot')
        batch_op.drop_column('product_code_snapshot')
        batch_op.drop_column('product_name_snapshot')

    with op.batch_alter_table('documents', schema=None) as batch_op:
        batch_op.drop_constraint('uq_documents_idempotency_key', type_='unique')
        batch_op.drop_column('client_name_snapshot')
        batch_op.drop_column('client_id')
        batch_op.drop_column('idempotency_key')
