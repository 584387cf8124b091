"""Initial stock ledger schema

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18

This migration adds:
1. Tenancy reference data (organizations, outlets, products)
2. Per-outlet document sequences
3. Stock ledger entries and the append-only movement log
4. Transfer documents and advisory reservations
5. Sales and sale lines
6. Damage reports with repair/scrap actions
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=nullable)


def upgrade():
    # ==========================================================================
    # 1. TENANCY
    # ==========================================================================
    op.create_table('organizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_organizations_code', 'organizations', ['code'], unique=True)
    op.create_index('ix_organizations_is_active', 'organizations', ['is_active'])

    op.create_table('outlets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'name', name='uq_outlets_org_name'),
        sa.UniqueConstraint('org_id', 'code', name='uq_outlets_org_code'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_outlets_org_id', 'outlets', ['org_id'])

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'sku', name='uq_products_org_sku'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_products_org_id', 'products', ['org_id'])
    op.create_index('ix_products_org_name', 'products', ['org_id', 'name'])

    # ==========================================================================
    # 2. DOCUMENT SEQUENCES
    # ==========================================================================
    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('outlet_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['outlet_id'], ['outlets.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('outlet_id', 'document_type', name='uq_doc_sequences_outlet_type'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_document_sequences_outlet_id', 'document_sequences', ['outlet_id'])
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'])

    # ==========================================================================
    # 3. LEDGER ENTRIES
    # ==========================================================================
    op.create_table('stock_ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('outlet_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('damaged_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.CheckConstraint('quantity >= 0', name='ck_ledger_quantity_non_negative'),
        sa.CheckConstraint('damaged_quantity >= 0', name='ck_ledger_damaged_non_negative'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['outlet_id'], ['outlets.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'outlet_id', 'product_id', name='uq_ledger_org_outlet_product'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_ledger_entries_org_id', 'stock_ledger_entries', ['org_id'])
    op.create_index('ix_stock_ledger_entries_outlet_id', 'stock_ledger_entries', ['outlet_id'])
    op.create_index('ix_stock_ledger_entries_product_id', 'stock_ledger_entries', ['product_id'])
    op.create_index('ix_ledger_org_product', 'stock_ledger_entries', ['org_id', 'product_id'])

    # ==========================================================================
    # 4. SALES
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('outlet_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('order_discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.Column('completed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voided_by_user_id', sa.Integer(), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('void_reason', sa.String(length=255), nullable=True),
        sa.Column('refunded_by_user_id', sa.Integer(), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refund_reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['outlet_id'], ['outlets.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('outlet_id', 'document_number', name='uq_sales_outlet_docnum'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sales_org_id', 'sales', ['org_id'])
    op.create_index('ix_sales_outlet_id', 'sales', ['outlet_id'])
    op.create_index('ix_sales_customer_id', 'sales', ['customer_id'])
    op.create_index('ix_sales_status', 'sales', ['status'])
    op.create_index('ix_sales_org_status_created', 'sales', ['org_id', 'status', 'created_at'])

    op.create_table('sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_lines_sale_id', 'sale_lines', ['sale_id'])

    # ==========================================================================
    # 5. TRANSFERS AND MOVEMENT LOG
    # ==========================================================================
    op.create_table('stock_transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('from_outlet_id', sa.Integer(), nullable=False),
        sa.Column('to_outlet_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='COMPLETED'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.Column('reversed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('reversed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reversal_reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['from_outlet_id'], ['outlets.id']),
        sa.ForeignKeyConstraint(['to_outlet_id'], ['outlets.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_transfers_org_id', 'stock_transfers', ['org_id'])
    op.create_index('ix_stock_transfers_from_outlet_id', 'stock_transfers', ['from_outlet_id'])
    op.create_index('ix_stock_transfers_to_outlet_id', 'stock_transfers', ['to_outlet_id'])
    op.create_index('ix_stock_transfers_product_id', 'stock_transfers', ['product_id'])
    op.create_index('ix_stock_transfers_status', 'stock_transfers', ['status'])
    op.create_index('ix_transfers_org_created', 'stock_transfers', ['org_id', 'created_at'])

    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('ledger_entry_id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('outlet_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('change_type', sa.String(length=32), nullable=False),
        sa.Column('quantity_before', sa.Integer(), nullable=False),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('change_amount', sa.Integer(), nullable=False),
        sa.Column('damaged_quantity_before', sa.Integer(), nullable=False),
        sa.Column('damaged_quantity_after', sa.Integer(), nullable=False),
        sa.Column('damaged_change_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('transfer_id', sa.Integer(), nullable=True),
        sa.Column('damage_report_id', sa.Integer(), nullable=True),
        sa.Column('paired_movement_id', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['ledger_entry_id'], ['stock_ledger_entries.id']),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['outlet_id'], ['outlets.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['transfer_id'], ['stock_transfers.id']),
        sa.ForeignKeyConstraint(['paired_movement_id'], ['stock_movements.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_movements_ledger_entry_id', 'stock_movements', ['ledger_entry_id'])
    op.create_index('ix_stock_movements_org_id', 'stock_movements', ['org_id'])
    op.create_index('ix_stock_movements_change_type', 'stock_movements', ['change_type'])
    op.create_index('ix_stock_movements_actor_user_id', 'stock_movements', ['actor_user_id'])
    op.create_index('ix_stock_movements_sale_id', 'stock_movements', ['sale_id'])
    op.create_index('ix_stock_movements_transfer_id', 'stock_movements', ['transfer_id'])
    op.create_index('ix_stock_movements_damage_report_id', 'stock_movements', ['damage_report_id'])
    op.create_index('ix_stock_movements_created_at', 'stock_movements', ['created_at'])
    op.create_index('ix_movements_entry_created', 'stock_movements', ['ledger_entry_id', 'created_at'])
    op.create_index('ix_movements_org_outlet_product', 'stock_movements', ['org_id', 'outlet_id', 'product_id'])

    op.create_table('stock_reservations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('ledger_entry_id', sa.Integer(), nullable=False),
        sa.Column('outlet_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('reservation_key', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.Column('released_by_user_id', sa.Integer(), nullable=True),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['ledger_entry_id'], ['stock_ledger_entries.id']),
        sa.ForeignKeyConstraint(['outlet_id'], ['outlets.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'reservation_key', name='uq_reservations_org_key'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_reservations_org_id', 'stock_reservations', ['org_id'])
    op.create_index('ix_stock_reservations_status', 'stock_reservations', ['status'])
    op.create_index('ix_reservations_entry_status', 'stock_reservations', ['ledger_entry_id', 'status'])

    # ==========================================================================
    # 6. DAMAGE REPORTS
    # ==========================================================================
    op.create_table('damage_reports',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('outlet_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('reported_quantity', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=24), nullable=False, server_default='REPORTED'),
        sa.Column('severity', sa.String(length=16), nullable=False, server_default='MEDIUM'),
        sa.Column('damage_type', sa.String(length=16), nullable=False, server_default='PHYSICAL'),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('estimated_loss_cents', sa.Integer(), nullable=True),
        sa.Column('repair_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('recovery_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reported_by_user_id', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.Column('inspected_by_user_id', sa.Integer(), nullable=True),
        sa.Column('inspected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('quantity >= 0', name='ck_damage_quantity_non_negative'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['outlet_id'], ['outlets.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_damage_reports_org_id', 'damage_reports', ['org_id'])
    op.create_index('ix_damage_reports_outlet_id', 'damage_reports', ['outlet_id'])
    op.create_index('ix_damage_reports_product_id', 'damage_reports', ['product_id'])
    op.create_index('ix_damage_reports_status', 'damage_reports', ['status'])
    op.create_index('ix_damage_reports_created_at', 'damage_reports', ['created_at'])
    op.create_index('ix_damage_org_status_created', 'damage_reports', ['org_id', 'status', 'created_at'])

    for table, value_column in (
        ('damage_repair_actions', 'repair_cost_cents'),
        ('damage_scrap_actions', 'recovery_value_cents'),
    ):
        op.create_table(table,
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('report_id', sa.Integer(), nullable=False),
            sa.Column('quantity', sa.Integer(), nullable=False),
            sa.Column(value_column, sa.Integer(), nullable=False, server_default='0'),
            sa.Column('notes', sa.Text(), nullable=True),
            sa.Column('performed_by_user_id', sa.Integer(), nullable=True),
            _timestamp('created_at'),
            sa.ForeignKeyConstraint(['report_id'], ['damage_reports.id']),
            sa.PrimaryKeyConstraint('id'),
            sqlite_autoincrement=True,
        )
        op.create_index(f'ix_{table}_report_id', table, ['report_id'])


def downgrade():
    for table in (
        'damage_scrap_actions',
        'damage_repair_actions',
        'damage_reports',
        'stock_reservations',
        'stock_movements',
        'stock_transfers',
        'sale_lines',
        'sales',
        'stock_ledger_entries',
        'document_sequences',
        'products',
        'outlets',
        'organizations',
    ):
        op.drop_table(table)
