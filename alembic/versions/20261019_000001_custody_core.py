"""Create custody core tables

Revision ID: 20261019_000001
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Deposits: tx_hash is the dedup key across all chains
    op.create_table(
        'deposits',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(64), nullable=False),
        sa.Column('tx_hash', sa.String(255), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('from_address', sa.String(128), nullable=True),
        sa.Column('to_address', sa.String(128), nullable=False),
        sa.Column('currency', sa.String(16), nullable=False),
        sa.Column('network', sa.String(32), nullable=False),
        sa.Column('amount', sa.DECIMAL(36, 18), nullable=False),
        sa.Column('rate', sa.DECIMAL(24, 8), nullable=True),
        sa.Column('real_arrival', sa.DECIMAL(36, 18), nullable=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('type', sa.String(16), nullable=False, server_default='crypto'),
        sa.Column('block_number', sa.BigInteger(), nullable=True),
        sa.Column('confirmations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('amount > 0', name='check_deposit_amount_positive'),
        sa.CheckConstraint('confirmations >= 0', name='check_deposit_confirmations_non_negative'),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'failed')", name='check_deposit_status'
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id'),
    )
    op.create_index('ix_deposits_tx_hash', 'deposits', ['tx_hash'], unique=True)
    op.create_index('ix_deposits_to_address', 'deposits', ['to_address'])
    op.create_index('idx_deposit_network_status', 'deposits', ['network', 'status'])
    op.create_index('idx_deposit_user_currency', 'deposits', ['user_id', 'currency'])

    # Balances: one row per (user, currency)
    op.create_table(
        'balances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(16), nullable=False),
        sa.Column('amount', sa.DECIMAL(36, 18), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'currency', name='uq_balance_user_currency'),
    )

    # Withdrawal / sweep / gas top-up journal
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=True),
        sa.Column('type', sa.String(16), nullable=False),
        sa.Column('currency', sa.String(16), nullable=False),
        sa.Column('network', sa.String(32), nullable=False),
        sa.Column('amount', sa.DECIMAL(36, 18), nullable=False),
        sa.Column('fee', sa.DECIMAL(36, 18), nullable=False, server_default='0'),
        sa.Column('from_address', sa.String(128), nullable=True),
        sa.Column('to_address', sa.String(128), nullable=True),
        sa.Column('tx_hash', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tx_hash'),
    )
    op.create_index('idx_transaction_user_type', 'transactions', ['user_id', 'type'])

    # Deposit wallets (written by the wallet service)
    op.create_table(
        'wallets',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('blockchain', sa.String(32), nullable=False),
        sa.Column('network', sa.String(32), nullable=False),
        sa.Column('public_key', sa.String(128), nullable=False),
        sa.Column('encrypted_private_key', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('public_key'),
    )
    op.create_index('ix_wallets_user_id', 'wallets', ['user_id'])
    op.create_index('idx_wallet_chain_network', 'wallets', ['blockchain', 'network'])

    # Range scan high-water marks
    op.create_table(
        'chain_sync_state',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('chain', sa.String(32), nullable=False),
        sa.Column('last_synced_height', sa.BigInteger(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_chain_sync_state_chain', 'chain_sync_state', ['chain'], unique=True)


def downgrade() -> None:
    op.drop_index('ix_chain_sync_state_chain', 'chain_sync_state')
    op.drop_table('chain_sync_state')

    op.drop_index('idx_wallet_chain_network', 'wallets')
    op.drop_index('ix_wallets_user_id', 'wallets')
    op.drop_table('wallets')

    op.drop_index('idx_transaction_user_type', 'transactions')
    op.drop_table('transactions')

    op.drop_table('balances')

    op.drop_index('idx_deposit_user_currency', 'deposits')
    op.drop_index('idx_deposit_network_status', 'deposits')
    op.drop_index('ix_deposits_to_address', 'deposits')
    op.drop_index('ix_deposits_tx_hash', 'deposits')
    op.drop_table('deposits')
