"""
Ledger record types.

Plain dataclasses passed between the deposit pipeline, the withdrawal
engine and the ledger store, independent of the ORM session.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal


@dataclass(frozen=True)
class WalletEntry:
    """Monitored deposit address of one user."""

    user_id: int
    address: str
    blockchain: str
    network: str
    encrypted_private_key: str | None = None


@dataclass(frozen=True)
class NewDeposit:
    """Deposit record to insert together with its balance credit."""

    order_id: str
    tx_hash: str
    user_id: int
    to_address: str
    currency: str
    network: str
    amount: Decimal
    status: str
    type: str
    confirmations: int
    from_address: str | None = None
    rate: Decimal | None = None
    real_arrival: Decimal | None = None
    block_number: int | None = None
    confirmed_at: datetime | None = None


@dataclass(frozen=True)
class DepositRecord:
    """Stored deposit."""

    order_id: str
    tx_hash: str
    user_id: int
    to_address: str
    currency: str
    network: str
    amount: Decimal
    status: str
    type: str
    confirmations: int
    from_address: str | None = None
    rate: Decimal | None = None
    real_arrival: Decimal | None = None
    block_number: int | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    confirmed_at: datetime | None = None


@dataclass(frozen=True)
class TransactionEntry:
    """Journal entry for a withdrawal, sweep or gas top-up."""

    type: str
    currency: str
    network: str
    amount: Decimal
    user_id: int | None = None
    fee: Decimal = Decimal("0")
    from_address: str | None = None
    to_address: str | None = None
    tx_hash: str | None = None
    status: str = "submitted"
