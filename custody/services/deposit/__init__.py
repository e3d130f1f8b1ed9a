"""Deposit detection and crediting."""

from custody.services.deposit.poller import ChainScanState, DepositPoller, ScanReport
from custody.services.deposit.processed_tx_cache import ProcessedTxCache
from custody.services.deposit.processor import (
    DepositOutcome,
    DepositProcessor,
    DetectedDeposit,
    ProcessStatus,
)

__all__ = [
    "ChainScanState",
    "DepositOutcome",
    "DepositPoller",
    "DepositProcessor",
    "DetectedDeposit",
    "ProcessStatus",
    "ProcessedTxCache",
    "ScanReport",
]
