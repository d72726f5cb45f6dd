"""Add subscriptions, usage counters and increment keys

Revision ID: 0001_entitlements
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '0001_entitlements'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the subscription and usage tables."""

    op.create_table(
        'subscriptions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False, unique=True, index=True),

        # Billing provider IDs
        sa.Column('polar_customer_id', sa.String(255), index=True),
        sa.Column('polar_subscription_id', sa.String(255), unique=True, index=True),

        # Subscription details
        sa.Column('tier', sa.String(20), server_default='free', nullable=False),
        sa.Column('status', sa.String(20), server_default='active', nullable=False),

        # Billing period dates
        sa.Column('current_period_start', sa.DateTime(timezone=True)),
        sa.Column('current_period_end', sa.DateTime(timezone=True)),

        # Timestamps
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'usage_counters',
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('counter_kind', sa.String(32), nullable=False),
        sa.Column('period_key', sa.String(16), nullable=False),
        sa.Column('used', sa.Integer, server_default='0', nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('user_id', 'counter_kind', 'period_key'),
        sa.CheckConstraint('used >= 0', name='ck_usage_counters_used_non_negative'),
    )

    op.create_table(
        'usage_increment_keys',
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('counter_kind', sa.String(32), nullable=False),
        sa.Column('idempotency_key', sa.String(128), nullable=False),
        sa.Column('period_key', sa.String(16), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('user_id', 'counter_kind', 'idempotency_key'),
    )

    # Row level security: users may read their own rows, writes go through the service role
    for table in ('subscriptions', 'usage_counters'):
        op.execute(f'ALTER TABLE {table} ENABLE ROW LEVEL SECURITY')
        op.execute(f"""
            CREATE POLICY "Users can view own {table}"
            ON {table} FOR SELECT
            TO authenticated
            USING (user_id = auth.uid())
        """)
        op.execute(f"""
            CREATE POLICY "Service role manages {table}"
            ON {table} FOR ALL
            TO service_role
            USING (true)
            WITH CHECK (true)
        """)

    op.execute('ALTER TABLE usage_increment_keys ENABLE ROW LEVEL SECURITY')


def downgrade() -> None:
    """Drop the subscription and usage tables."""

    for table in ('subscriptions', 'usage_counters'):
        op.execute(f'DROP POLICY IF EXISTS "Users can view own {table}" ON {table}')
        op.execute(f'DROP POLICY IF EXISTS "Service role manages {table}" ON {table}')

    op.drop_table('usage_increment_keys')
    op.drop_table('usage_counters')
    op.drop_table('subscriptions')
