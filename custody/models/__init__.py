"""
Database models.

Importing this package registers every table on Base.metadata.
"""

from custody.models.balance import Balance
from custody.models.base import Base
from custody.models.chain_sync_state import ChainSyncState
from custody.models.deposit import Deposit
from custody.models.transaction import Transaction
from custody.models.wallet import Wallet

__all__ = [
    "Balance",
    "Base",
    "ChainSyncState",
    "Deposit",
    "Transaction",
    "Wallet",
]
