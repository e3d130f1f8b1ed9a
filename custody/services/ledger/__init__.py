"""Ledger records and store."""

from custody.services.ledger.records import (
    DepositRecord,
    NewDeposit,
    TransactionEntry,
    WalletEntry,
)
from custody.services.ledger.store import LedgerStore, SqlLedgerStore

__all__ = [
    "DepositRecord",
    "LedgerStore",
    "NewDeposit",
    "SqlLedgerStore",
    "TransactionEntry",
    "WalletEntry",
]
