"""Initial order ledger schema

Revision ID: 20261018_order_ledger
Revises:
Create Date: 2026-10-18

This migration adds:
1. promo_codes, promo_code_redemptions
2. pos_sessions (one open session per branch/till via partial unique index)
3. dining_tables, delivery_charge_configs, document_sequences
4. orders, order_items, order_events
5. payment_records, session_payment_applications
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_order_ledger'
down_revision = None
branch_labels = None
depends_on = None


def _enum(name, *values):
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True, length=32)


PAYMENT_METHODS = ('cash', 'card', 'jazzcash', 'split')


def upgrade():
    # ==========================================================================
    # 1. PROMO CODES
    # ==========================================================================
    op.create_table('promo_codes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('discount_type', _enum('promo_discount_type', 'percentage', 'fixed'), nullable=False),
        sa.Column('discount_value', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('min_order_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_discount_cents', sa.Integer(), nullable=True),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('per_user_limit', sa.Integer(), nullable=True),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('valid_from', sa.DateTime(), nullable=False),
        sa.Column('valid_until', sa.DateTime(), nullable=True),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('usage_limit IS NULL OR usage_count <= usage_limit', name='ck_promo_codes_usage_within_limit'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('promo_codes', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_promo_codes_code'), ['code'], unique=True)
        batch_op.create_index(batch_op.f('ix_promo_codes_branch_id'), ['branch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_promo_codes_is_active'), ['is_active'], unique=False)

    # ==========================================================================
    # 2. POS SESSIONS
    # ==========================================================================
    op.create_table('pos_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_number', sa.String(length=64), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('till', sa.String(length=32), nullable=False, server_default='MAIN'),
        sa.Column('opened_by_actor_id', sa.Integer(), nullable=False),
        sa.Column('closed_by_actor_id', sa.Integer(), nullable=True),
        sa.Column('status', _enum('pos_session_status', 'open', 'closed'), nullable=False),
        sa.Column('opening_cash_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('closing_cash_cents', sa.Integer(), nullable=True),
        sa.Column('expected_cash_cents', sa.Integer(), nullable=True),
        sa.Column('cash_difference_cents', sa.Integer(), nullable=True),
        sa.Column('total_sales_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cash_sales_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('card_sales_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('jazzcash_sales_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_refunds_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('opened_at', sa.DateTime(), nullable=False),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'session_number', name='uq_pos_sessions_branch_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('pos_sessions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_pos_sessions_branch_id'), ['branch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_pos_sessions_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_pos_sessions_opened_at'), ['opened_at'], unique=False)
    op.create_index(
        'uq_pos_sessions_one_open_per_till',
        'pos_sessions',
        ['branch_id', 'till'],
        unique=True,
        sqlite_where=sa.text("status = 'open'"),
        postgresql_where=sa.text("status = 'open'"),
    )

    # ==========================================================================
    # 3. TABLES, DELIVERY CONFIG, SEQUENCES
    # ==========================================================================
    op.create_table('dining_tables',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('table_number', sa.String(length=16), nullable=False),
        sa.Column('seats', sa.Integer(), nullable=False, server_default='4'),
        sa.Column('status', _enum('dining_table_status', 'available', 'occupied', 'reserved'), nullable=False),
        sa.Column('current_order_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'table_number', name='uq_dining_tables_branch_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('dining_tables', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_dining_tables_branch_id'), ['branch_id'], unique=False)

    op.create_table('delivery_charge_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('pricing_model', _enum('delivery_pricing_model', 'static', 'dynamic'), nullable=False),
        sa.Column('static_charge_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('base_charge_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('per_km_charge_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_distance_km', sa.Numeric(precision=8, scale=2), nullable=True),
        sa.Column('free_delivery_threshold_cents', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id'),
        sqlite_autoincrement=True
    )

    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'document_type', name='uq_document_sequences_branch_type'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('document_sequences', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_document_sequences_branch_id'), ['branch_id'], unique=False)

    # ==========================================================================
    # 4. ORDERS
    # ==========================================================================
    op.create_table('orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=64), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('customer_name', sa.String(length=128), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('customer_address', sa.String(length=255), nullable=True),
        sa.Column('order_type', _enum('order_type', 'delivery', 'pickup', 'dine-in'), nullable=False),
        sa.Column('order_source', _enum('order_source', 'online', 'pos', 'phone'), nullable=False),
        sa.Column('status', _enum('order_status', 'pending', 'preparing', 'ready', 'completed', 'cancelled'), nullable=False),
        sa.Column('payment_method', _enum('order_payment_method', *PAYMENT_METHODS), nullable=False),
        sa.Column('payment_status', _enum(
            'order_payment_status',
            'pending', 'awaiting_verification', 'paid', 'partially_refunded', 'refunded',
        ), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_reason', sa.String(length=255), nullable=True),
        sa.Column('promo_code_id', sa.Integer(), nullable=True),
        sa.Column('delivery_charge_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delivery_distance_km', sa.Numeric(precision=8, scale=2), nullable=True),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('amount_paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('session_id', sa.Integer(), nullable=True),
        sa.Column('table_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by_actor_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('discount_cents <= subtotal_cents', name='ck_orders_discount_le_subtotal'),
        sa.CheckConstraint('total_cents >= 0', name='ck_orders_total_non_negative'),
        sa.ForeignKeyConstraint(['promo_code_id'], ['promo_codes.id'], ),
        sa.ForeignKeyConstraint(['session_id'], ['pos_sessions.id'], ),
        sa.ForeignKeyConstraint(['table_id'], ['dining_tables.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_orders_branch_id'), ['branch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_customer_id'), ['customer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_payment_status'), ['payment_status'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_promo_code_id'), ['promo_code_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_session_id'), ['session_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_table_id'), ['table_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_created_at'), ['created_at'], unique=False)
        batch_op.create_index('ix_orders_branch_status_created', ['branch_id', 'status', 'created_at'], unique=False)

    op.create_table('order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('item_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('variants', sa.JSON(), nullable=False),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('order_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_order_items_order_id'), ['order_id'], unique=False)

    op.create_table('promo_code_redemptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('promo_code_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('discount_cents', sa.Integer(), nullable=False),
        sa.Column('redeemed_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['promo_code_id'], ['promo_codes.id'], ),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('promo_code_redemptions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_promo_code_redemptions_promo_code_id'), ['promo_code_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_promo_code_redemptions_order_id'), ['order_id'], unique=False)
        batch_op.create_index('ix_promo_redemptions_promo_user', ['promo_code_id', 'user_id'], unique=False)

    # ==========================================================================
    # 5. PAYMENTS
    # ==========================================================================
    op.create_table('payment_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=True),
        sa.Column('kind', _enum('payment_kind', 'payment', 'refund'), nullable=False),
        sa.Column('method', _enum('payment_record_method', *PAYMENT_METHODS), nullable=False),
        sa.Column('status', _enum(
            'payment_record_status',
            'completed', 'refunded', 'pending_verification', 'rejected',
        ), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('tendered_cents', sa.Integer(), nullable=True),
        sa.Column('change_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('refunded_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('split_group', sa.String(length=36), nullable=True),
        sa.Column('refund_of_id', sa.Integer(), nullable=True),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('recorded_by_actor_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['session_id'], ['pos_sessions.id'], ),
        sa.ForeignKeyConstraint(['refund_of_id'], ['payment_records.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('payment_records', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payment_records_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_records_session_id'), ['session_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_records_method'), ['method'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_records_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_records_split_group'), ['split_group'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_records_refund_of_id'), ['refund_of_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_records_created_at'), ['created_at'], unique=False)
        batch_op.create_index('ix_payment_records_order_status', ['order_id', 'status'], unique=False)

    op.create_table('session_payment_applications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('method', _enum('session_application_method', *PAYMENT_METHODS), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('counted_order', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('applied_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['pos_sessions.id'], ),
        sa.ForeignKeyConstraint(['payment_id'], ['payment_records.id'], ),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_id', name='uq_session_applications_payment'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('session_payment_applications', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_session_payment_applications_session_id'), ['session_id'], unique=False)
        batch_op.create_index('ix_session_applications_session_order', ['session_id', 'order_id'], unique=False)

    op.create_table('order_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('session_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('from_status', sa.String(length=32), nullable=True),
        sa.Column('to_status', sa.String(length=32), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['payment_id'], ['payment_records.id'], ),
        sa.ForeignKeyConstraint(['session_id'], ['pos_sessions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('order_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_order_events_branch_id'), ['branch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_order_events_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_order_events_payment_id'), ['payment_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_order_events_session_id'), ['session_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_order_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_order_events_occurred_at'), ['occurred_at'], unique=False)
        batch_op.create_index('ix_order_events_branch_type_id', ['branch_id', 'event_type', 'id'], unique=False)


def downgrade():
    op.drop_table('order_events')
    op.drop_table('session_payment_applications')
    op.drop_table('payment_records')
    op.drop_table('promo_code_redemptions')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('document_sequences')
    op.drop_table('delivery_charge_configs')
    op.drop_table('dining_tables')
    op.drop_index('uq_pos_sessions_one_open_per_till', table_name='pos_sessions')
    op.drop_table('pos_sessions')
    op.drop_table('promo_codes')
