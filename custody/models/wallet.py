"""
Wallet model.

Per-user deposit wallets. Created by the wallet service; the custody
core only reads them.
"""

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from custody.models.base import Base


class Wallet(Base):
    """Deposit wallet of one user on one chain/network."""

    __tablename__ = "wallets"
    __table_args__ = (
        Index('idx_wallet_chain_network', 'blockchain', 'network'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    blockchain: Mapped[str] = mapped_column(String(32), nullable=False)
    network: Mapped[str] = mapped_column(String(32), nullable=False)
    public_key: Mapped[str] = mapped_column(
        String(128), nullable=False, unique=True
    )  # Deposit address
    encrypted_private_key: Mapped[str | None] = mapped_column(
        Text, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
