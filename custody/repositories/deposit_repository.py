"""
Deposit repository.

Data access layer for Deposit model.
"""

from decimal import Decimal
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from custody.config.constants import DEPOSIT_STATUS_CONFIRMED, DEPOSIT_STATUS_PENDING
from custody.models.deposit import Deposit
from custody.repositories.base import BaseRepository


class DepositRepository(BaseRepository[Deposit]):
    """Deposit repository with specific queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize deposit repository."""
        super().__init__(Deposit, session)

    async def get_by_tx_hash(self, tx_hash: str) -> Deposit | None:
        """
        Get deposit by chain transaction identifier.

        Args:
            tx_hash: Transaction hash or signature

        Returns:
            Deposit or None
        """
        return await self.get_by(tx_hash=tx_hash)

    async def get_stats(
        self, network: str, currency: str | None = None
    ) -> dict[str, Any]:
        """
        Aggregate deposit statistics for a network.

        Args:
            network: Chain name
            currency: Restrict to one currency (optional)

        Returns:
            Dict with total_deposits, total_amount,
            pending_deposits, confirmed_deposits
        """
        stmt = select(
            func.count(Deposit.id),
            func.coalesce(func.sum(Deposit.amount), 0),
            func.coalesce(
                func.sum(case((Deposit.status == DEPOSIT_STATUS_PENDING, 1), else_=0)), 0
            ),
            func.coalesce(
                func.sum(case((Deposit.status == DEPOSIT_STATUS_CONFIRMED, 1), else_=0)), 0
            ),
        ).where(Deposit.network == network)

        if currency:
            stmt = stmt.where(Deposit.currency == currency)

        result = await self.session.execute(stmt)
        total, amount, pending, confirmed = result.one()

        return {
            "total_deposits": int(total or 0),
            "total_amount": Decimal(str(amount or 0)),
            "pending_deposits": int(pending or 0),
            "confirmed_deposits": int(confirmed or 0),
        }
