"""Repositories over AsyncSession."""

from custody.repositories.balance_repository import BalanceRepository
from custody.repositories.chain_sync_state_repository import ChainSyncStateRepository
from custody.repositories.deposit_repository import DepositRepository
from custody.repositories.transaction_repository import TransactionRepository
from custody.repositories.wallet_repository import WalletRepository

__all__ = [
    "BalanceRepository",
    "ChainSyncStateRepository",
    "DepositRepository",
    "TransactionRepository",
    "WalletRepository",
]
