"""Add bot treasury budget and treasury snapshot tables

Revision ID: 002_bot_treasury
Revises: 001_ledger_tables
Create Date: 2026-10-19 15:00:00.000000

"""
from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

from coin_ledger.migrations.util import get_uuid_type, get_timestamp_default

# revision identifiers, used by Alembic.
revision = '002_bot_treasury'
down_revision = '001_ledger_tables'
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    uuid_type = get_uuid_type()
    now = get_timestamp_default()

    op.create_table(
        'ledger_bot_treasuries',
        sa.Column('treasury_wallet_id', uuid_type, nullable=False),
        sa.Column('daily_spend_limit', sa.Integer(), nullable=False),
        sa.Column('spent_today', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('spent_day', sa.String(10), nullable=True),
        sa.Column('total_spent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=now),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=now),
        sa.ForeignKeyConstraint(['treasury_wallet_id'], ['ledger_wallets.wallet_id']),
        sa.PrimaryKeyConstraint('treasury_wallet_id'),
    )

    op.create_table(
        'ledger_treasury_snapshots',
        sa.Column('snapshot_id', uuid_type, nullable=False),
        sa.Column('snapshot_date', sa.String(10), nullable=False),
        sa.Column('circulation_total', sa.Integer(), nullable=False),
        sa.Column('user_balances_total', sa.Integer(), nullable=False),
        sa.Column('bot_balances_total', sa.Integer(), nullable=False),
        sa.Column('bot_treasury_balance', sa.Integer(), nullable=False),
        sa.Column('platform_treasury_balance', sa.Integer(), nullable=False),
        sa.Column('coins_expired_24h', sa.Integer(), nullable=False),
        sa.Column('treasury_spent_today', sa.Integer(), nullable=False),
        sa.Column('anomaly_detected', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=now),
        sa.PrimaryKeyConstraint('snapshot_id'),
        sa.UniqueConstraint('snapshot_date', name='uq_ledger_treasury_snapshots_snapshot_date'),
    )


def downgrade() -> None:
    op.drop_table('ledger_treasury_snapshots')
    op.drop_table('ledger_bot_treasuries')
