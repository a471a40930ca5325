"""Create ledger tables

Revision ID: 001_ledger_tables
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

from coin_ledger.migrations.util import get_uuid_type, get_timestamp_default

# revision identifiers, used by Alembic.
revision = '001_ledger_tables'
down_revision = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    uuid_type = get_uuid_type()
    now = get_timestamp_default()

    op.create_table(
        'ledger_accounts',
        sa.Column('account_id', uuid_type, nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=now),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('account_id'),
    )
    op.create_index('ix_ledger_accounts_kind', 'ledger_accounts', ['kind'])

    op.create_table(
        'ledger_wallets',
        sa.Column('wallet_id', uuid_type, nullable=False),
        sa.Column('account_id', uuid_type, nullable=False),
        sa.Column('balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('available_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lifetime_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lifetime_spent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=now),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=now),
        sa.ForeignKeyConstraint(['account_id'], ['ledger_accounts.account_id']),
        sa.PrimaryKeyConstraint('wallet_id'),
    )
    op.create_index('ix_ledger_wallets_account_id', 'ledger_wallets', ['account_id'], unique=True)

    op.create_table(
        'ledger_wallet_holds',
        sa.Column('hold_id', uuid_type, nullable=False),
        sa.Column('wallet_id', uuid_type, nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=now),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['wallet_id'], ['ledger_wallets.wallet_id']),
        sa.PrimaryKeyConstraint('hold_id'),
    )
    op.create_index('ix_ledger_wallet_holds_wallet_id', 'ledger_wallet_holds', ['wallet_id'])

    op.create_table(
        'ledger_transactions',
        sa.Column('transaction_id', uuid_type, nullable=False),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('initiator_account_id', uuid_type, nullable=False),
        sa.Column('counterparty_account_id', uuid_type, nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('context', sa.JSON(), nullable=False),
        sa.Column('idempotency_key', sa.String(128), nullable=True),
        sa.Column('request_key', sa.String(128), nullable=True),
        sa.Column('failure_code', sa.String(50), nullable=True),
        sa.Column('failure_detail', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=now),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['initiator_account_id'], ['ledger_accounts.account_id']),
        sa.ForeignKeyConstraint(['counterparty_account_id'], ['ledger_accounts.account_id']),
        sa.PrimaryKeyConstraint('transaction_id'),
        sa.UniqueConstraint('idempotency_key', name='uq_ledger_transactions_idempotency_key'),
    )
    op.create_index('ix_ledger_transactions_type', 'ledger_transactions', ['type'])
    op.create_index('ix_ledger_transactions_status', 'ledger_transactions', ['status'])
    op.create_index('ix_ledger_transactions_request_key', 'ledger_transactions', ['request_key'])
    op.create_index(
        'ix_ledger_transactions_initiator_created', 'ledger_transactions',
        ['initiator_account_id', 'created_at'],
    )
    op.create_index(
        'ix_ledger_transactions_counterparty_created', 'ledger_transactions',
        ['counterparty_account_id', 'created_at'],
    )

    op.create_table(
        'ledger_journal_entries',
        sa.Column('entry_id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('ledger_transaction_id', uuid_type, nullable=False),
        sa.Column('wallet_id', uuid_type, nullable=False),
        sa.Column('direction', sa.String(10), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('balance_before', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('memo', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=now),
        sa.CheckConstraint('amount > 0', name='ck_ledger_journal_entries_amount_positive'),
        sa.ForeignKeyConstraint(['ledger_transaction_id'], ['ledger_transactions.transaction_id']),
        sa.ForeignKeyConstraint(['wallet_id'], ['ledger_wallets.wallet_id']),
        sa.PrimaryKeyConstraint('entry_id'),
    )
    op.create_index(
        'ix_ledger_journal_entries_ledger_transaction_id', 'ledger_journal_entries', ['ledger_transaction_id']
    )
    op.create_index('ix_ledger_journal_entries_wallet_entry', 'ledger_journal_entries', ['wallet_id', 'entry_id'])

    op.create_table(
        'ledger_fraud_signals',
        sa.Column('signal_id', uuid_type, nullable=False),
        sa.Column('account_id', uuid_type, nullable=False),
        sa.Column('signal_type', sa.String(50), nullable=False),
        sa.Column('severity', sa.String(20), nullable=False),
        sa.Column('evidence', sa.JSON(), nullable=False),
        sa.Column('ledger_transaction_id', uuid_type, nullable=True),
        sa.Column('review_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=now),
        sa.ForeignKeyConstraint(['account_id'], ['ledger_accounts.account_id']),
        sa.PrimaryKeyConstraint('signal_id'),
    )
    op.create_index(
        'ix_ledger_fraud_signals_account_created', 'ledger_fraud_signals', ['account_id', 'created_at']
    )

    op.create_table(
        'ledger_bot_policies',
        sa.Column('account_id', uuid_type, nullable=False),
        sa.Column('wallet_cap', sa.Integer(), nullable=False),
        sa.Column('daily_action_limit', sa.Integer(), nullable=False),
        sa.Column('action_cooldown_seconds', sa.Integer(), nullable=False),
        sa.Column('treasury_wallet_id', uuid_type, nullable=False),
        sa.Column('actions_today', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('actions_day', sa.String(10), nullable=True),
        sa.Column('last_action_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=now),
        sa.ForeignKeyConstraint(['account_id'], ['ledger_accounts.account_id']),
        sa.ForeignKeyConstraint(['treasury_wallet_id'], ['ledger_wallets.wallet_id']),
        sa.PrimaryKeyConstraint('account_id'),
    )


def downgrade() -> None:
    op.drop_table('ledger_bot_policies')
    op.drop_index('ix_ledger_fraud_signals_account_created', table_name='ledger_fraud_signals')
    op.drop_table('ledger_fraud_signals')
    op.drop_index('ix_ledger_journal_entries_wallet_entry', table_name='ledger_journal_entries')
    op.drop_index('ix_ledger_journal_entries_ledger_transaction_id', table_name='ledger_journal_entries')
    op.drop_table('ledger_journal_entries')
    op.drop_index('ix_ledger_transactions_counterparty_created', table_name='ledger_transactions')
    op.drop_index('ix_ledger_transactions_initiator_created', table_name='ledger_transactions')
    op.drop_index('ix_ledger_transactions_request_key', table_name='ledger_transactions')
    op.drop_index('ix_ledger_transactions_status', table_name='ledger_transactions')
    op.drop_index('ix_ledger_transactions_type', table_name='ledger_transactions')
    op.drop_table('ledger_transactions')
    op.drop_index('ix_ledger_wallet_holds_wallet_id', table_name='ledger_wallet_holds')
    op.drop_table('ledger_wallet_holds')
    op.drop_index('ix_ledger_wallets_account_id', table_name='ledger_wallets')
    op.drop_table('ledger_wallets')
    op.drop_index('ix_ledger_accounts_kind', table_name='ledger_accounts')
    op.drop_table('ledger_accounts')
