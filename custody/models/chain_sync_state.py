"""
Chain Sync State model.

Persisted high-water mark of range-capable deposit scans.
"""

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from custody.models.base import Base


class ChainSyncState(Base):
    """
    Tracks deposit scan progress per chain.

    Used to:
    - Resume range scanning after restart
    - Track scan errors per chain
    """

    __tablename__ = "chain_sync_state"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    chain: Mapped[str] = mapped_column(
        String(32), nullable=False, unique=True, index=True
    )  # solana, ethereum, tron

    last_synced_height: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True
    )  # Block number or slot, None until the first completed scan

    # Error tracking
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )
