"""quota_engine_baseline

Revision ID: 3c1a9e7d5b20
Revises:
Create Date: 2026-02-02 10:14:27.518203

Production-safe migration: Only creates tables that don't exist yet.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '3c1a9e7d5b20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def table_exists(table_name: str) -> bool:
    """Check if a table exists in the database."""
    bind = op.get_bind()
    inspector = inspect(bind)
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    """
    Create the quota engine tables if they don't exist.
    """
    # Create subscriptions table (account -> tier)
    if not table_exists('subscriptions'):
        op.create_table('subscriptions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('account_id', sa.String(), nullable=False),
            sa.Column('tier', sa.String(), nullable=True),
            sa.Column('status', sa.String(), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_subscriptions_account_id'), 'subscriptions', ['account_id'], unique=True)
        op.create_index(op.f('ix_subscriptions_id'), 'subscriptions', ['id'], unique=False)

    # Create usage_ledgers table
    if not table_exists('usage_ledgers'):
        op.create_table('usage_ledgers',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('account_id', sa.String(), nullable=False),
            sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_usage_ledgers_account_id'), 'usage_ledgers', ['account_id'], unique=True)
        op.create_index(op.f('ix_usage_ledgers_id'), 'usage_ledgers', ['id'], unique=False)

    # Create usage_counters table
    if not table_exists('usage_counters'):
        op.create_table('usage_counters',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('ledger_id', sa.Integer(), nullable=False),
            sa.Column('kind', sa.String(), nullable=False),
            sa.Column('count', sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(['ledger_id'], ['usage_ledgers.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('ledger_id', 'kind', name='uq_ledger_kind')
        )
        op.create_index(op.f('ix_usage_counters_id'), 'usage_counters', ['id'], unique=False)
        op.create_index(op.f('ix_usage_counters_ledger_id'), 'usage_counters', ['ledger_id'], unique=False)

    # Create usage_snapshots table
    if not table_exists('usage_snapshots'):
        op.create_table('usage_snapshots',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('ledger_id', sa.Integer(), nullable=False),
            sa.Column('account_id', sa.String(), nullable=False),
            sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
            sa.Column('period_end', sa.DateTime(timezone=True), nullable=False),
            sa.Column('month_key', sa.String(length=7), nullable=False),
            sa.Column('counts', sa.JSON(), nullable=False),
            sa.Column('archived_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['ledger_id'], ['usage_ledgers.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('ledger_id', 'period_start', name='uq_ledger_period')
        )
        op.create_index('idx_snapshot_account_period', 'usage_snapshots', ['account_id', 'period_start'], unique=False)
        op.create_index(op.f('ix_usage_snapshots_account_id'), 'usage_snapshots', ['account_id'], unique=False)
        op.create_index(op.f('ix_usage_snapshots_id'), 'usage_snapshots', ['id'], unique=False)
        op.create_index(op.f('ix_usage_snapshots_ledger_id'), 'usage_snapshots', ['ledger_id'], unique=False)

    # Create weekly_job_quotas table
    if not table_exists('weekly_job_quotas'):
        op.create_table('weekly_job_quotas',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('account_id', sa.String(), nullable=False),
            sa.Column('tier', sa.String(), nullable=False),
            sa.Column('week_start', sa.DateTime(timezone=True), nullable=False),
            sa.Column('week_end', sa.DateTime(timezone=True), nullable=False),
            sa.Column('week_year', sa.Integer(), nullable=False),
            sa.Column('week_number', sa.Integer(), nullable=False),
            sa.Column('limit', sa.Integer(), nullable=False),
            sa.Column('consumed', sa.Integer(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('account_id', 'week_start', name='uq_account_week')
        )
        op.create_index('idx_account_week_number', 'weekly_job_quotas', ['account_id', 'week_year', 'week_number'], unique=False)
        op.create_index(op.f('ix_weekly_job_quotas_account_id'), 'weekly_job_quotas', ['account_id'], unique=False)
        op.create_index(op.f('ix_weekly_job_quotas_id'), 'weekly_job_quotas', ['id'], unique=False)

    # Create weekly_search_runs table
    if not table_exists('weekly_search_runs'):
        op.create_table('weekly_search_runs',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('quota_id', sa.Integer(), nullable=False),
            sa.Column('run_id', sa.String(), nullable=False),
            sa.Column('run_date', sa.DateTime(timezone=True), nullable=False),
            sa.Column('kept', sa.Integer(), nullable=False),
            sa.Column('label', sa.String(), nullable=True),
            sa.Column('deleted', sa.Boolean(), nullable=False),
            sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(['quota_id'], ['weekly_job_quotas.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_weekly_search_runs_id'), 'weekly_search_runs', ['id'], unique=False)
        op.create_index(op.f('ix_weekly_search_runs_quota_id'), 'weekly_search_runs', ['quota_id'], unique=False)
        op.create_index(op.f('ix_weekly_search_runs_run_id'), 'weekly_search_runs', ['run_id'], unique=False)

    # Create ai_job_searches table
    if not table_exists('ai_job_searches'):
        op.create_table('ai_job_searches',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('account_id', sa.String(), nullable=False),
            sa.Column('tier', sa.String(), nullable=False),
            sa.Column('name', sa.String(), nullable=False),
            sa.Column('status', sa.String(), nullable=False),
            sa.Column('daily_limit', sa.Integer(), nullable=False),
            sa.Column('jobs_found_today', sa.Integer(), nullable=False),
            sa.Column('total_jobs_found', sa.Integer(), nullable=False),
            sa.Column('week_ref', sa.DateTime(timezone=True), nullable=True),
            sa.Column('status_message', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('last_updated', sa.DateTime(timezone=True), nullable=False),
            sa.Column('last_progress_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('idx_search_account_status', 'ai_job_searches', ['account_id', 'status'], unique=False)
        op.create_index(op.f('ix_ai_job_searches_account_id'), 'ai_job_searches', ['account_id'], unique=False)
        op.create_index(op.f('ix_ai_job_searches_id'), 'ai_job_searches', ['id'], unique=False)

    # Create ai_search_reasoning_logs table
    if not table_exists('ai_search_reasoning_logs'):
        op.create_table('ai_search_reasoning_logs',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('search_id', sa.Integer(), nullable=False),
            sa.Column('phase', sa.String(), nullable=False),
            sa.Column('message', sa.Text(), nullable=False),
            sa.Column('details', sa.JSON(), nullable=False),
            sa.Column('success', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['search_id'], ['ai_job_searches.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_ai_search_reasoning_logs_id'), 'ai_search_reasoning_logs', ['id'], unique=False)
        op.create_index(op.f('ix_ai_search_reasoning_logs_search_id'), 'ai_search_reasoning_logs', ['search_id'], unique=False)


def downgrade() -> None:
    """
    Drop the quota engine tables, children first.
    """
    for table_name in (
        'ai_search_reasoning_logs',
        'ai_job_searches',
        'weekly_search_runs',
        'weekly_job_quotas',
        'usage_snapshots',
        'usage_counters',
        'usage_ledgers',
        'subscriptions',
    ):
        if table_exists(table_name):
            op.drop_table(table_name)
