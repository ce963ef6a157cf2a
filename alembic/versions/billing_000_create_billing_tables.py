"""Create billing tables (businesses, plans, subscriptions, payment history, discount codes)

Revision ID: 000_create_billing_tables
Revises:
Create Date: 2026-10-19

Note: businesses is owned by the listing service; the payment flow only
writes its billing columns. Create it here only when it does not exist yet.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '000_create_billing_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create billing tables."""
    inspector = sa.inspect(op.get_bind())
    existing = set(inspector.get_table_names())

    if 'businesses' not in existing:
        op.create_table(
            'businesses',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('name', sa.String(255), nullable=False),
            sa.Column('email', sa.String(255), index=True),
            sa.Column('subscription_status', sa.String(50), server_default='pending'),
            sa.Column('plan_name', sa.String(100)),
            sa.Column('next_billing_date', sa.DateTime(timezone=True)),
            sa.Column('last_payment_date', sa.DateTime(timezone=True)),
            sa.Column('payment_method_last_four', sa.String(4)),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True)),
        )

    op.create_table(
        'subscription_plans',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False, unique=True, index=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # One row per business: the payment flow upserts on business_id
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('business_id', sa.String(36), sa.ForeignKey('businesses.id'), nullable=False, unique=True, index=True),
        sa.Column('plan_id', sa.String(36), sa.ForeignKey('subscription_plans.id'), nullable=True),
        sa.Column('status', sa.String(30), server_default='active'),
        sa.Column('payment_status', sa.String(30), server_default='paid'),
        sa.Column('current_period_start', sa.DateTime(timezone=True)),
        sa.Column('current_period_end', sa.DateTime(timezone=True)),
        sa.Column('payment_provider', sa.String(30), server_default='nmi'),
        sa.Column('nmi_subscription_id', sa.String(100)),
        sa.Column('nmi_customer_vault_id', sa.String(100)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )

    op.create_table(
        'payment_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('business_id', sa.String(36), sa.ForeignKey('businesses.id'), nullable=False, index=True),
        sa.Column('nmi_transaction_id', sa.String(100)),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('response_text', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'discount_codes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('code', sa.String(50), nullable=False, unique=True, index=True),
        sa.Column('description', sa.Text()),
        sa.Column('discount_type', sa.String(20), server_default='percentage'),
        sa.Column('discount_value', sa.Numeric(10, 2), nullable=False),
        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('current_uses', sa.Integer(), server_default='0'),
        sa.Column('valid_from', sa.DateTime(timezone=True)),
        sa.Column('valid_until', sa.DateTime(timezone=True)),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('applies_to_plan', sa.String(36), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )


def downgrade():
    """Drop billing tables (businesses is left to its owner)."""
    op.drop_table('discount_codes')
    op.drop_table('payment_history')
    op.drop_table('subscriptions')
    op.drop_table('subscription_plans')
