"""Baseline: users, plans and subscription billing tables

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _json():
    return sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create the user and subscription billing schema."""

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('name', sa.String(255)),
        *_timestamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'plans',
        sa.Column('code', sa.String(20), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.String()),
        sa.Column('price_cents', sa.Integer, nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='usd'),
        sa.Column('interval', sa.String(20), nullable=False, server_default='month'),
        sa.Column('trial_period_days', sa.Integer, nullable=False, server_default='0'),
        *_timestamps(),
    )

    # One record per user; the unique index is what serializes trial creation
    op.create_table(
        'user_subscriptions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('plan_code', sa.String(20), sa.ForeignKey('plans.code'), nullable=False, server_default='trial'),
        sa.Column('status', sa.String(30), nullable=False, server_default='trialing'),
        sa.Column('provider', sa.String(20), nullable=False, server_default='internal'),
        sa.Column('trial_ends_at', sa.DateTime(timezone=True)),
        sa.Column('current_period_end', sa.DateTime(timezone=True)),
        sa.Column('cancel_at_period_end', sa.Boolean, nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index('ix_user_subscriptions_user_id', 'user_subscriptions', ['user_id'], unique=True)

    op.create_table(
        'stripe_customers',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('customer_id', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255)),
        *_timestamps(),
    )
    op.create_index('ix_stripe_customers_user_id', 'stripe_customers', ['user_id'], unique=True)
    op.create_index('ix_stripe_customers_customer_id', 'stripe_customers', ['customer_id'], unique=True)

    op.create_table(
        'stripe_subscriptions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('subscription_id', sa.String(255), nullable=False),
        sa.Column('stripe_customer_id', sa.Uuid(), sa.ForeignKey('stripe_customers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_subscription_id', sa.Uuid(), sa.ForeignKey('user_subscriptions.id', ondelete='SET NULL')),
        sa.Column('plan_code', sa.String(20)),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('current_period_start', sa.DateTime(timezone=True)),
        sa.Column('current_period_end', sa.DateTime(timezone=True)),
        sa.Column('cancel_at_period_end', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('canceled_at', sa.DateTime(timezone=True)),
        sa.Column('subscription_created', sa.Integer),
        sa.Column('raw_data', _json()),
        *_timestamps(),
    )
    op.create_index('ix_stripe_subscriptions_subscription_id', 'stripe_subscriptions', ['subscription_id'], unique=True)
    op.create_index('ix_stripe_subscriptions_stripe_customer_id', 'stripe_subscriptions', ['stripe_customer_id'])
    op.create_index('ix_stripe_subscriptions_user_subscription_id', 'stripe_subscriptions', ['user_subscription_id'])

    op.create_table(
        'subscription_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('stripe_subscription_id', sa.Uuid(), sa.ForeignKey('stripe_subscriptions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(100), nullable=False),
        sa.Column('payload', _json(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_subscription_events_stripe_subscription_id', 'subscription_events', ['stripe_subscription_id'])


def downgrade() -> None:
    """Drop the schema in reverse dependency order."""
    op.drop_table('subscription_events')
    op.drop_table('stripe_subscriptions')
    op.drop_table('stripe_customers')
    op.drop_table('user_subscriptions')
    op.drop_table('plans')
    op.drop_table('users')
