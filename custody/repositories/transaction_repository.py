"""
Transaction repository.

Data access layer for the withdrawal/sweep journal.
"""

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from custody.models.transaction import Transaction
from custody.repositories.base import BaseRepository


class TransactionRepository(BaseRepository[Transaction]):
    """Transaction journal repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize transaction repository."""
        super().__init__(Transaction, session)

    async def list_for_user(
        self, user_id: int, type: str | None = None, limit: int = 100
    ) -> list[Transaction]:
        """
        List journal entries of a user.

        Args:
            user_id: User ID
            type: Entry type filter (optional)
            limit: Max number of results

        Returns:
            Entries ordered by id
        """
        if type:
            return await self.find_all(limit=limit, user_id=user_id, type=type)
        return await self.find_all(limit=limit, user_id=user_id)

    async def list_by_status(
        self, network: str, type: str, status: str, limit: int = 500
    ) -> list[Transaction]:
        """
        List journal entries of a network in one state, oldest first.

        Args:
            network: Chain name
            type: Entry type
            status: Entry status

        Returns:
            Matching entries
        """
        return await self.find_all(limit=limit, network=network, type=type, status=status)

    async def set_status(self, tx_hash: str, status: str) -> bool:
        """
        Update the status of the entry with this tx hash.

        Returns:
            True if an entry was updated
        """
        stmt = (
            update(Transaction)
            .where(Transaction.tx_hash == tx_hash)
            .values(status=status)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0
