"""initial steel distribution schema

Revision ID: s1a2b3c4d5e6
Revises:
Create Date: 2026-10-18 00:00:00.000000

This migration creates the complete schema from scratch:
- users: phone-keyed identities with role, lifecycle status and cached balances
- otp_codes / otp_rate_limits: short-lived login state (expired rows purged by CLI)
- aso_dealer_mappings: hierarchy audit rows, one active per dealer
- products: steel rod / TMT bar catalog
- stock_dispatches / barbender_sales / barbender_purchases: stock movements
- daily_stock: per-dealer per-day aggregates
- balance_entries: append-only balance ledger
- rewards: committed reward claims
- security_events: security audit trail
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 's1a2b3c4d5e6'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    """
    Create all tables from scratch.

    WHY: quantities are NUMERIC(14,3) kg so balances never accumulate float
    error; non-negativity of cached balances is also enforced by the DB.
    """

    # ============================================================================
    # users: Identity store
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('public_id', sa.String(length=32), nullable=False),
        sa.Column('country_code', sa.String(length=8), nullable=False),
        sa.Column('phone_no', sa.String(length=15), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('available_qty', sa.Numeric(14, 3), nullable=False),
        sa.Column('reward_eligible_qty', sa.Numeric(14, 3), nullable=False),
        sa.Column('assigned_aso_id', sa.Integer(), nullable=True),
        sa.Column('dealer_id', sa.Integer(), nullable=True),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('last_otp_validated_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.CheckConstraint('available_qty >= 0', name='ck_users_available_qty_non_negative'),
        sa.CheckConstraint('reward_eligible_qty >= 0', name='ck_users_reward_eligible_qty_non_negative'),
        sa.ForeignKeyConstraint(['assigned_aso_id'], ['users.id'], name='fk_users_assigned_aso_id_users'),
        sa.ForeignKeyConstraint(['dealer_id'], ['users.id'], name='fk_users_dealer_id_users'),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], name='fk_users_created_by_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.UniqueConstraint('phone_no', name='uq_users_phone_no'),
        sa.UniqueConstraint('public_id', name='uq_users_public_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_status', 'users', ['status'])
    op.create_index('ix_users_role_status', 'users', ['role', 'status'])
    op.create_index('ix_users_assigned_aso_id', 'users', ['assigned_aso_id'])
    op.create_index('ix_users_dealer_id', 'users', ['dealer_id'])

    # ============================================================================
    # otp_codes / otp_rate_limits: Login state
    # ============================================================================
    # WHY unique phone_key: concurrent sends for one phone collapse into a
    # single upserted row instead of racing to create two.
    op.create_table(
        'otp_codes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('phone_key', sa.String(length=32), nullable=False),
        sa.Column('country_code', sa.String(length=8), nullable=False),
        sa.Column('phone_no', sa.String(length=15), nullable=False),
        sa.Column('code_hash', sa.String(length=255), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_otp_codes'),
        sa.UniqueConstraint('phone_key', name='uq_otp_codes_phone_key'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_otp_codes_expires_at', 'otp_codes', ['expires_at'])

    op.create_table(
        'otp_rate_limits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('phone_key', sa.String(length=32), nullable=False),
        sa.Column('country_code', sa.String(length=8), nullable=False),
        sa.Column('phone_no', sa.String(length=15), nullable=False),
        sa.Column('last_request_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('daily_request_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_otp_rate_limits'),
        sa.UniqueConstraint('phone_key', name='uq_otp_rate_limits_phone_key'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_otp_rate_limits_expires_at', 'otp_rate_limits', ['expires_at'])

    # ============================================================================
    # aso_dealer_mappings: Hierarchy edges
    # ============================================================================
    op.create_table(
        'aso_dealer_mappings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('aso_id', sa.Integer(), nullable=False),
        sa.Column('dealer_id', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_by_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['aso_id'], ['users.id'], name='fk_aso_dealer_mappings_aso_id_users'),
        sa.ForeignKeyConstraint(['dealer_id'], ['users.id'], name='fk_aso_dealer_mappings_dealer_id_users'),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], name='fk_aso_dealer_mappings_created_by_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_aso_dealer_mappings'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_aso_dealer_mappings_dealer_id', 'aso_dealer_mappings', ['dealer_id'])
    op.create_index('ix_aso_dealer_mappings_aso_active', 'aso_dealer_mappings', ['aso_id', 'is_active'])
    # One active ASO per dealer
    op.create_index(
        'uq_aso_dealer_mappings_active_dealer',
        'aso_dealer_mappings',
        ['dealer_id'],
        unique=True,
        sqlite_where=sa.text('is_active = 1'),
        postgresql_where=sa.text('is_active'),
    )

    # ============================================================================
    # products: Catalog
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=32), nullable=False),
        sa.Column('thickness_inch', sa.Numeric(8, 3), nullable=False),
        sa.Column('grade', sa.String(length=32), nullable=True),
        sa.Column('length', sa.Numeric(10, 3), nullable=True),
        sa.Column('weight_per_unit', sa.Numeric(10, 3), nullable=True),
        sa.Column('unit', sa.String(length=16), nullable=False),
        sa.Column('price_per_unit', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_by_id', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], name='fk_products_created_by_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_products'),
        sa.UniqueConstraint('code', name='uq_products_code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_is_active', 'products', ['is_active'])
    op.create_index('ix_products_category_active', 'products', ['category', 'is_active'])

    # ============================================================================
    # stock_dispatches: ASO -> Dealer (PENDING until received)
    # ============================================================================
    op.create_table(
        'stock_dispatches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('aso_id', sa.Integer(), nullable=False),
        sa.Column('dealer_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity_kg', sa.Numeric(14, 3), nullable=False),
        sa.Column('dispatched_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sequential_day', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by_id', sa.Integer(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.CheckConstraint('quantity_kg > 0', name='ck_stock_dispatches_quantity_positive'),
        sa.ForeignKeyConstraint(['aso_id'], ['users.id'], name='fk_stock_dispatches_aso_id_users'),
        sa.ForeignKeyConstraint(['dealer_id'], ['users.id'], name='fk_stock_dispatches_dealer_id_users'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_stock_dispatches_product_id_products'),
        sa.ForeignKeyConstraint(['cancelled_by_id'], ['users.id'], name='fk_stock_dispatches_cancelled_by_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_stock_dispatches'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_dispatches_aso_id', 'stock_dispatches', ['aso_id'])
    op.create_index('ix_stock_dispatches_dealer_status', 'stock_dispatches', ['dealer_id', 'status'])
    op.create_index('ix_stock_dispatches_dealer_day', 'stock_dispatches', ['dealer_id', 'sequential_day'])

    # ============================================================================
    # barbender_sales / barbender_purchases
    # ============================================================================
    op.create_table(
        'barbender_sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('dealer_id', sa.Integer(), nullable=False),
        sa.Column('barbender_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity_kg', sa.Numeric(14, 3), nullable=False),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sequential_day', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.CheckConstraint('quantity_kg > 0', name='ck_barbender_sales_quantity_positive'),
        sa.ForeignKeyConstraint(['dealer_id'], ['users.id'], name='fk_barbender_sales_dealer_id_users'),
        sa.ForeignKeyConstraint(['barbender_id'], ['users.id'], name='fk_barbender_sales_barbender_id_users'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_barbender_sales_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_barbender_sales'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_barbender_sales_dealer_sold', 'barbender_sales', ['dealer_id', 'sold_at'])
    op.create_index('ix_barbender_sales_barbender_sold', 'barbender_sales', ['barbender_id', 'sold_at'])

    op.create_table(
        'barbender_purchases',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('barbender_id', sa.Integer(), nullable=False),
        sa.Column('source_name', sa.String(length=255), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('quantity_kg', sa.Numeric(14, 3), nullable=False),
        sa.Column('purchased_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.CheckConstraint('quantity_kg > 0', name='ck_barbender_purchases_quantity_positive'),
        sa.ForeignKeyConstraint(['barbender_id'], ['users.id'], name='fk_barbender_purchases_barbender_id_users'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_barbender_purchases_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_barbender_purchases'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_barbender_purchases_barbender_purchased', 'barbender_purchases', ['barbender_id', 'purchased_at'])

    # ============================================================================
    # daily_stock: Per-dealer per-day aggregate
    # ============================================================================
    op.create_table(
        'daily_stock',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('dealer_id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('sequential_day', sa.Integer(), nullable=False),
        sa.Column('opening_balance_kg', sa.Numeric(14, 3), nullable=False),
        sa.Column('total_received_kg', sa.Numeric(14, 3), nullable=False),
        sa.Column('total_dispatched_kg', sa.Numeric(14, 3), nullable=False),
        sa.Column('available_balance_kg', sa.Numeric(14, 3), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['dealer_id'], ['users.id'], name='fk_daily_stock_dealer_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_daily_stock'),
        sa.UniqueConstraint('dealer_id', 'date', name='uq_daily_stock_dealer_date'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_daily_stock_dealer_id', 'daily_stock', ['dealer_id'])

    # ============================================================================
    # balance_entries: Append-only balance ledger
    # ============================================================================
    op.create_table(
        'balance_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('account', sa.String(length=16), nullable=False),
        sa.Column('entry_type', sa.String(length=32), nullable=False),
        sa.Column('delta', sa.Numeric(14, 3), nullable=False),
        sa.Column('balance_after', sa.Numeric(14, 3), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_balance_entries_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_balance_entries'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_balance_entries_user_account', 'balance_entries', ['user_id', 'account', 'id'])
    op.create_index('ix_balance_entries_reference', 'balance_entries', ['reference_type', 'reference_id'])
    op.create_index('ix_balance_entries_occurred_at', 'balance_entries', ['occurred_at'])

    # ============================================================================
    # rewards: Committed claims
    # ============================================================================
    op.create_table(
        'rewards',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('user_role', sa.String(length=16), nullable=False),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('total_kg', sa.Numeric(14, 3), nullable=False),
        sa.Column('eligible_kg', sa.Numeric(14, 3), nullable=False),
        sa.Column('claimed_eligible_kg', sa.Numeric(14, 3), nullable=False),
        sa.Column('reward_kg', sa.Numeric(14, 3), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_rewards_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_rewards'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_rewards_user_id', 'rewards', ['user_id'])
    op.create_index('ix_rewards_user_period', 'rewards', ['user_id', 'period_start'])

    # ============================================================================
    # security_events: Audit trail
    # ============================================================================
    op.create_table(
        'security_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('phone_key', sa.String(length=32), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('resource', sa.String(length=128), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_security_events_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_security_events'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_security_events_user_id', 'security_events', ['user_id'])
    op.create_index('ix_security_events_phone_key', 'security_events', ['phone_key'])
    op.create_index('ix_security_events_event_type', 'security_events', ['event_type'])
    op.create_index('ix_security_events_success', 'security_events', ['success'])
    op.create_index('ix_security_events_occurred_at', 'security_events', ['occurred_at'])
    op.create_index('ix_security_events_user_type', 'security_events', ['user_id', 'event_type'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('security_events')
    op.drop_table('rewards')
    op.drop_table('balance_entries')
    op.drop_table('daily_stock')
    op.drop_table('barbender_purchases')
    op.drop_table('barbender_sales')
    op.drop_table('stock_dispatches')
    op.drop_table('products')
    op.drop_table('aso_dealer_mappings')
    op.drop_table('otp_rate_limits')
    op.drop_table('otp_codes')
    op.drop_table('users')
