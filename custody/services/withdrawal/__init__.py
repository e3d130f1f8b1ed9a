"""
Withdrawal services package.

- fee_policy: Fixed fees, pool minimum reserves and chain routing
- withdrawal_engine: Pool payout with balance and reserve checks
"""

from custody.services.withdrawal.fee_policy import FeePolicy
from custody.services.withdrawal.withdrawal_engine import (
    WithdrawalCheck,
    WithdrawalEngine,
)

__all__ = [
    "FeePolicy",
    "WithdrawalCheck",
    "WithdrawalEngine",
]
