"""
Transaction model.

Journal of chain-side movements initiated by the custody core:
withdrawals, sweeps and gas top-ups.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from custody.models.base import Base
from custody.models.types import MoneyType


class Transaction(Base):
    """Ledger journal entry."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index('idx_transaction_user_type', 'user_id', 'type'),
        Index('idx_transaction_network_type_status', 'network', 'type', 'status'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    user_id: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True
    )  # None for pool-level movements
    type: Mapped[str] = mapped_column(
        String(16), nullable=False
    )  # withdraw, sweep, gas_topup
    currency: Mapped[str] = mapped_column(String(16), nullable=False)
    network: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False
    )  # Negative for withdrawals
    fee: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False, default=Decimal("0")
    )

    from_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    to_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tx_hash: Mapped[str | None] = mapped_column(
        String(255), nullable=True, unique=True
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="submitted"
    )  # submitted, pending, confirmed, failed

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
