"""Create metering tables

Revision ID: 001
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(updated: bool = True):
    columns = [sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())]
    if updated:
        columns.append(sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()))
    return columns


def upgrade() -> None:
    # Tables may already exist when Base.metadata.create_all ran first
    conn = op.get_bind()
    existing_tables = inspect(conn).get_table_names()

    if 'users' not in existing_tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('full_name', sa.String(length=255), nullable=True),
            sa.Column('is_blocked', sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(updated=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_users_id', 'users', ['id'])
        op.create_index('ix_users_email', 'users', ['email'], unique=True)

    if 'subscriptions' not in existing_tables:
        op.create_table(
            'subscriptions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('plan', sa.String(length=20), nullable=False, server_default='free'),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
            sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=True),
            sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
            sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_subscriptions_id', 'subscriptions', ['id'])
        op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'], unique=True)

    if 'plan_limits' not in existing_tables:
        op.create_table(
            'plan_limits',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('plan', sa.String(length=20), nullable=False),
            sa.Column('max_tokens_per_month', sa.Integer(), nullable=False),
            sa.Column('max_api_keys', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('max_team_members', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('price_usd', sa.Numeric(10, 2), nullable=False, server_default='0'),
            sa.Column('has_api_access', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('has_advanced_analytics', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('has_audit_logs', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('has_priority_support', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('has_sso', sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(updated=False),
            sa.CheckConstraint('max_tokens_per_month > 0', name='ck_plan_limits_tokens_positive'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_plan_limits_id', 'plan_limits', ['id'])
        op.create_index('ix_plan_limits_plan', 'plan_limits', ['plan'], unique=True)

    if 'monthly_usage' not in existing_tables:
        op.create_table(
            'monthly_usage',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('month_year', sa.String(length=7), nullable=False),
            sa.Column('total_tokens', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_cost_usd', sa.Float(), nullable=False, server_default='0'),
            sa.Column('request_count', sa.Integer(), nullable=False, server_default='0'),
            *_timestamps(),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id'),
            # ON CONFLICT target of the usage upsert
            sa.UniqueConstraint('user_id', 'month_year', name='uq_monthly_usage_user_month')
        )
        op.create_index('ix_monthly_usage_id', 'monthly_usage', ['id'])
        op.create_index('ix_monthly_usage_user_id', 'monthly_usage', ['user_id'])

    if 'api_keys' not in existing_tables:
        op.create_table(
            'api_keys',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('provider', sa.String(length=50), nullable=False, server_default='openai'),
            sa.Column('encrypted_key', sa.Text(), nullable=False),
            sa.Column('key_hint', sa.String(length=4), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_api_keys_user_id', 'api_keys', ['user_id'])

    if 'usage_logs' not in existing_tables:
        op.create_table(
            'usage_logs',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('api_key_id', sa.String(length=36), nullable=True),
            sa.Column('tokens_used', sa.Integer(), nullable=False),
            sa.Column('cost_usd', sa.Float(), nullable=False),
            sa.Column('model', sa.String(length=100), nullable=True),
            sa.Column('endpoint', sa.String(length=2000), nullable=True),
            *_timestamps(updated=False),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['api_key_id'], ['api_keys.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_usage_logs_id', 'usage_logs', ['id'])
        op.create_index('ix_usage_logs_user_id', 'usage_logs', ['user_id'])
        op.create_index('ix_usage_logs_created_at', 'usage_logs', ['created_at'])
        op.create_index('ix_usage_logs_user_created', 'usage_logs', ['user_id', 'created_at'])

    if 'spending_alerts' not in existing_tables:
        op.create_table(
            'spending_alerts',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('month_year', sa.String(length=7), nullable=False),
            sa.Column('threshold', sa.Integer(), nullable=False),
            sa.Column('alert_type', sa.String(length=50), nullable=False),
            *_timestamps(updated=False),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('user_id', 'month_year', 'threshold', name='uq_spending_alerts_user_month_threshold')
        )
        op.create_index('ix_spending_alerts_id', 'spending_alerts', ['id'])
        op.create_index('ix_spending_alerts_user_id', 'spending_alerts', ['user_id'])

    if 'admin_notifications' not in existing_tables:
        op.create_table(
            'admin_notifications',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('type', sa.String(length=50), nullable=False),
            sa.Column('title', sa.String(length=255), nullable=False),
            sa.Column('message', sa.Text(), nullable=False),
            sa.Column('data', sa.JSON(), nullable=True),
            sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(updated=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_admin_notifications_id', 'admin_notifications', ['id'])
        op.create_index('ix_admin_notifications_type', 'admin_notifications', ['type'])
        op.create_index('ix_admin_notifications_created_at', 'admin_notifications', ['created_at'])

    if 'system_settings' not in existing_tables:
        op.create_table(
            'system_settings',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('key', sa.String(length=100), nullable=False),
            sa.Column('value', sa.Text(), nullable=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_system_settings_id', 'system_settings', ['id'])
        op.create_index('ix_system_settings_key', 'system_settings', ['key'], unique=True)


def downgrade() -> None:
    for table in (
        'system_settings', 'admin_notifications', 'spending_alerts', 'usage_logs',
        'api_keys', 'monthly_usage', 'plan_limits', 'subscriptions', 'users'
    ):
        op.drop_table(table)
