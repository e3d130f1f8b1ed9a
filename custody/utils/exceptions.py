"""
Exception handling utilities.

Defines categorized exception types for deposit tracking, sweeping
and withdrawal issuance.
"""


class CustodyError(Exception):
    """Base class for all custody errors."""
    pass


class SecurityError(CustodyError):
    """Raised when a security-critical operation fails."""
    pass


class ChainUnavailable(CustodyError):
    """Raised when a chain RPC endpoint cannot be reached or answers with garbage."""

    def __init__(self, chain: str, message: str) -> None:
        self.chain = chain
        super().__init__(f"{chain}: {message}")


class TransferRejected(CustodyError):
    """Raised when a node refuses a submitted transfer."""

    def __init__(self, chain: str, message: str) -> None:
        self.chain = chain
        super().__init__(f"{chain}: {message}")


class ConfirmationTimeout(CustodyError):
    """Raised when a transaction is not confirmed within the allowed time.

    The transaction may still land; callers must re-poll its status.
    """

    def __init__(self, tx_id: str, timeout: float) -> None:
        self.tx_id = tx_id
        self.timeout = timeout
        super().__init__(f"Transaction {tx_id} not confirmed after {timeout}s")


class DuplicateTxHash(CustodyError):
    """Raised when a deposit with the same transaction hash already exists."""

    def __init__(self, tx_hash: str) -> None:
        self.tx_hash = tx_hash
        super().__init__(f"Deposit already recorded for {tx_hash}")


class OracleUnavailable(CustodyError):
    """Raised when a price cannot be obtained."""
    pass


class WithdrawalRejected(CustodyError):
    """Withdrawal refused before anything was submitted or debited."""

    reason = "rejected"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidAddress(WithdrawalRejected):
    """Destination address is malformed for the target chain."""

    reason = "invalid_address"


class InvalidAmount(WithdrawalRejected):
    """Amount is not a positive number."""

    reason = "invalid_amount"


class UnsupportedCurrency(WithdrawalRejected):
    """Currency cannot be withdrawn on the requested network."""

    reason = "unsupported_currency"


class InsufficientBalance(WithdrawalRejected):
    """User ledger balance does not cover the withdrawal."""

    reason = "insufficient_balance"


class InsufficientPoolLiquidity(WithdrawalRejected):
    """Pool balance would drop below its minimum reserve."""

    reason = "insufficient_pool_liquidity"


class WithdrawalFailed(CustodyError):
    """Chain submission failed; no debit was applied."""
    pass


# Exception categories based on handling strategy

# Transient - retry on the next cycle
TRANSIENT_ERRORS = (
    ChainUnavailable,
    ConfirmationTimeout,
)


def is_transient(exc: Exception) -> bool:
    """
    Check if exception is transient and the operation can be retried later.

    Args:
        exc: Exception to check

    Returns:
        True if exception is transient
    """
    return isinstance(exc, TRANSIENT_ERRORS)

