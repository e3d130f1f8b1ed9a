"""Add status to transaction journal

Revision ID: 20261019_000002
Revises: 20261019_000001
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019_000002'
down_revision: Union[str, None] = '20261019_000001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Sweeps stay 'pending' until confirmed (and credited) so any process
    # can reconcile them after a restart
    op.add_column(
        'transactions',
        sa.Column('status', sa.String(16), nullable=False, server_default='submitted'),
    )
    op.create_index(
        'idx_transaction_network_type_status',
        'transactions',
        ['network', 'type', 'status'],
    )


def downgrade() -> None:
    op.drop_index('idx_transaction_network_type_status', 'transactions')
    op.drop_column('transactions', 'status')
