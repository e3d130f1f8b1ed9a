"""
Chain sync state repository.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from custody.models.chain_sync_state import ChainSyncState
from custody.repositories.base import BaseRepository


class ChainSyncStateRepository(BaseRepository[ChainSyncState]):
    """Persisted scan progress per chain."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize chain sync state repository."""
        super().__init__(ChainSyncState, session)

    async def get_height(self, chain: str) -> int | None:
        """
        Get last synced height.

        Args:
            chain: Chain name

        Returns:
            Last synced block/slot or None if never synced
        """
        state = await self.get_by(chain=chain)
        return state.last_synced_height if state else None

    async def save_height(self, chain: str, height: int) -> None:
        """
        Store last synced height and clear the error counter.

        Args:
            chain: Chain name
            height: Block number or slot
        """
        state = await self.get_by(chain=chain)
        if state is None:
            await self.create(chain=chain, last_synced_height=height)
            return

        state.last_synced_height = height
        state.error_count = 0
        state.last_error = None
        await self.session.flush()

    async def record_error(self, chain: str, error: str) -> None:
        """
        Record a scan error.

        Args:
            chain: Chain name
            error: Error message
        """
        state = await self.get_by(chain=chain)
        if state is None:
            state = await self.create(chain=chain)

        state.error_count += 1
        state.last_error = error[:2000]
        await self.session.flush()
