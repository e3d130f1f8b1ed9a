"""
Deposit model.

One credited on-chain inflow to a user deposit address.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from custody.config.constants import DEPOSIT_STATUS_PENDING, DEPOSIT_TYPE_CRYPTO
from custody.models.base import Base
from custody.models.types import MoneyType, RateType


class Deposit(Base):
    """Deposit model - credited chain inflows."""

    __tablename__ = "deposits"
    __table_args__ = (
        CheckConstraint(
            'amount > 0', name='check_deposit_amount_positive'
        ),
        CheckConstraint(
            'confirmations >= 0', name='check_deposit_confirmations_non_negative'
        ),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'failed')",
            name='check_deposit_status'
        ),
        Index('idx_deposit_network_status', 'network', 'status'),
        Index('idx_deposit_user_currency', 'user_id', 'currency'),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Identity
    order_id: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True
    )  # DEP_<epoch-ms>_<8 hex>
    tx_hash: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, index=True
    )  # Dedup key, unique across all chains

    # Owner
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Transfer details
    from_address: Mapped[str | None] = mapped_column(
        String(128), nullable=True
    )
    to_address: Mapped[str] = mapped_column(
        String(128), nullable=False, index=True
    )
    currency: Mapped[str] = mapped_column(String(16), nullable=False)
    network: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    # USD enrichment, null when the oracle was unavailable
    rate: Mapped[Decimal | None] = mapped_column(RateType, nullable=True)
    real_arrival: Mapped[Decimal | None] = mapped_column(
        MoneyType, nullable=True
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=DEPOSIT_STATUS_PENDING
    )
    type: Mapped[str] = mapped_column(
        String(16), nullable=False, default=DEPOSIT_TYPE_CRYPTO
    )
    block_number: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True
    )  # Slot on Solana
    confirmations: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Deposit(id={self.id}, order_id={self.order_id}, "
            f"amount={self.amount} {self.currency}, status={self.status})>"
        )
