"""Create loyalty token ledger tables

Revision ID: a1c2e3f4b5d6
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c2e3f4b5d6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('tenants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=False),
        sa.Column('settings', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_tenants')),
        sa.UniqueConstraint('slug', name=op.f('uq_tenants_slug'))
    )

    op.create_table('customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name=op.f('fk_customers_tenant_id_tenants')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_customers'))
    )
    op.create_index(op.f('ix_customers_tenant_id'), 'customers', ['tenant_id'], unique=False)

    op.create_table('service_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name=op.f('fk_service_items_tenant_id_tenants')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_service_items'))
    )
    op.create_index(op.f('ix_service_items_tenant_id'), 'service_items', ['tenant_id'], unique=False)

    op.create_table('loyalty_programs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('tokens_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('token_name', sa.String(length=50), nullable=True, server_default='tokens'),
        sa.Column('earn_ratio', sa.Numeric(precision=10, scale=4), nullable=False, server_default='0.1'),
        sa.Column('expiry_days', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name=op.f('fk_loyalty_programs_tenant_id_tenants')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_loyalty_programs')),
        sa.UniqueConstraint('tenant_id', name=op.f('uq_loyalty_programs_tenant_id'))
    )

    op.create_table('membership_plans',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('program_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('tokens_multiplier', sa.Numeric(precision=6, scale=2), nullable=False, server_default='1.00'),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('tokens_multiplier > 0', name=op.f('ck_membership_plans_positive_multiplier')),
        sa.ForeignKeyConstraint(['program_id'], ['loyalty_programs.id'], name=op.f('fk_membership_plans_program_id_loyalty_programs')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name=op.f('fk_membership_plans_tenant_id_tenants')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_membership_plans'))
    )

    op.create_table('memberships',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('program_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('start_date', sa.DateTime(), nullable=True),
        sa.Column('end_date', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], name=op.f('fk_memberships_customer_id_customers')),
        sa.ForeignKeyConstraint(['plan_id'], ['membership_plans.id'], name=op.f('fk_memberships_plan_id_membership_plans')),
        sa.ForeignKeyConstraint(['program_id'], ['loyalty_programs.id'], name=op.f('fk_memberships_program_id_loyalty_programs')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name=op.f('fk_memberships_tenant_id_tenants')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_memberships'))
    )
    op.create_index('ix_memberships_customer_program', 'memberships', ['customer_id', 'program_id'], unique=False)
    op.create_index('ix_memberships_status_end', 'memberships', ['status', 'end_date'], unique=False)

    op.create_table('token_balances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('program_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('current_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_spent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_expired', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_earn_at', sa.DateTime(), nullable=True),
        sa.Column('last_redeem_at', sa.DateTime(), nullable=True),
        sa.Column('last_expire_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('current_balance >= 0', name=op.f('ck_token_balances_non_negative_balance')),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], name=op.f('fk_token_balances_customer_id_customers')),
        sa.ForeignKeyConstraint(['program_id'], ['loyalty_programs.id'], name=op.f('fk_token_balances_program_id_loyalty_programs')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name=op.f('fk_token_balances_tenant_id_tenants')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_token_balances')),
        sa.UniqueConstraint('program_id', 'customer_id', name='uq_token_balances_program_customer')
    )
    op.create_index('ix_token_balances_tenant_customer', 'token_balances', ['tenant_id', 'customer_id'], unique=False)

    op.create_table('token_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('program_id', sa.Integer(), nullable=False),
        sa.Column('balance_id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=20), nullable=False),
        sa.Column('award_type', sa.String(length=50), nullable=True),
        sa.Column('tokens', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('source_type', sa.String(length=50), nullable=True),
        sa.Column('source_id', sa.String(length=100), nullable=True),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['balance_id'], ['token_balances.id'], name=op.f('fk_token_transactions_balance_id_token_balances')),
        sa.ForeignKeyConstraint(['program_id'], ['loyalty_programs.id'], name=op.f('fk_token_transactions_program_id_loyalty_programs')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name=op.f('fk_token_transactions_tenant_id_tenants')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_token_transactions'))
    )
    op.create_index('ix_token_transactions_balance_created', 'token_transactions', ['balance_id', 'created_at'], unique=False)
    op.create_index('ix_token_transactions_tenant_created', 'token_transactions', ['tenant_id', 'created_at'], unique=False)
    op.create_index('ix_token_transactions_source', 'token_transactions', ['source_type', 'source_id'], unique=False)
    op.create_index('ix_token_transactions_type_expires', 'token_transactions', ['transaction_type', 'expires_at'], unique=False)

    op.create_table('token_expiries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('earn_transaction_id', sa.Integer(), nullable=False),
        sa.Column('expire_transaction_id', sa.Integer(), nullable=True),
        sa.Column('balance_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['balance_id'], ['token_balances.id'], name=op.f('fk_token_expiries_balance_id_token_balances')),
        sa.ForeignKeyConstraint(['earn_transaction_id'], ['token_transactions.id'], name=op.f('fk_token_expiries_earn_transaction_id_token_transactions')),
        sa.ForeignKeyConstraint(['expire_transaction_id'], ['token_transactions.id'], name=op.f('fk_token_expiries_expire_transaction_id_token_transactions')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_token_expiries')),
        sa.UniqueConstraint('earn_transaction_id', name=op.f('uq_token_expiries_earn_transaction_id'))
    )
    op.create_index(op.f('ix_token_expiries_balance_id'), 'token_expiries', ['balance_id'], unique=False)

    op.create_table('rewards',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('program_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('tokens_required', sa.Integer(), nullable=False),
        sa.Column('stock_limit', sa.Integer(), nullable=True),
        sa.Column('stock_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_per_customer', sa.Integer(), nullable=True, server_default='1'),
        sa.Column('max_total', sa.Integer(), nullable=True),
        sa.Column('valid_days', sa.Integer(), nullable=True, server_default='30'),
        sa.Column('available_from', sa.DateTime(), nullable=True),
        sa.Column('available_until', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('tokens_required > 0', name=op.f('ck_rewards_positive_cost')),
        sa.CheckConstraint('stock_used >= 0', name=op.f('ck_rewards_non_negative_stock_used')),
        sa.CheckConstraint('stock_limit IS NULL OR stock_used <= stock_limit', name=op.f('ck_rewards_stock_within_limit')),
        sa.ForeignKeyConstraint(['program_id'], ['loyalty_programs.id'], name=op.f('fk_rewards_program_id_loyalty_programs')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name=op.f('fk_rewards_tenant_id_tenants')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_rewards'))
    )
    op.create_index('ix_rewards_program_active', 'rewards', ['program_id', 'is_active'], unique=False)

    op.create_table('redemptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('program_id', sa.Integer(), nullable=False),
        sa.Column('balance_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('reward_id', sa.Integer(), nullable=False),
        sa.Column('tokens_used', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('valid_until', sa.DateTime(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('reward_snapshot', sa.JSON(), nullable=True),
        sa.Column('fulfilled_at', sa.DateTime(), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['balance_id'], ['token_balances.id'], name=op.f('fk_redemptions_balance_id_token_balances')),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], name=op.f('fk_redemptions_customer_id_customers')),
        sa.ForeignKeyConstraint(['program_id'], ['loyalty_programs.id'], name=op.f('fk_redemptions_program_id_loyalty_programs')),
        sa.ForeignKeyConstraint(['reward_id'], ['rewards.id'], name=op.f('fk_redemptions_reward_id_rewards')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name=op.f('fk_redemptions_tenant_id_tenants')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_redemptions')),
        sa.UniqueConstraint('code', name=op.f('uq_redemptions_code'))
    )
    op.create_index('ix_redemptions_reward_customer', 'redemptions', ['reward_id', 'customer_id'], unique=False)
    op.create_index('ix_redemptions_tenant_created', 'redemptions', ['tenant_id', 'created_at'], unique=False)


def downgrade():
    op.drop_index('ix_redemptions_tenant_created', table_name='redemptions')
    op.drop_index('ix_redemptions_reward_customer', table_name='redemptions')
    op.drop_table('redemptions')
    op.drop_index('ix_rewards_program_active', table_name='rewards')
    op.drop_table('rewards')
    op.drop_index(op.f('ix_token_expiries_balance_id'), table_name='token_expiries')
    op.drop_table('token_expiries')
    op.drop_index('ix_token_transactions_type_expires', table_name='token_transactions')
    op.drop_index('ix_token_transactions_source', table_name='token_transactions')
    op.drop_index('ix_token_transactions_tenant_created', table_name='token_transactions')
    op.drop_index('ix_token_transactions_balance_created', table_name='token_transactions')
    op.drop_table('token_transactions')
    op.drop_index('ix_token_balances_tenant_customer', table_name='token_balances')
    op.drop_table('token_balances')
    op.drop_index('ix_memberships_status_end', table_name='memberships')
    op.drop_index('ix_memberships_customer_program', table_name='memberships')
    op.drop_table('memberships')
    op.drop_table('membership_plans')
    op.drop_table('loyalty_programs')
    op.drop_index(op.f('ix_service_items_tenant_id'), table_name='service_items')
    op.drop_table('service_items')
    op.drop_index(op.f('ix_customers_tenant_id'), table_name='customers')
    op.drop_table('customers')
    op.drop_table('tenants')
