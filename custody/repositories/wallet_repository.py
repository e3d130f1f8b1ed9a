"""
Wallet repository.

Read-only access to user deposit wallets.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from custody.models.wallet import Wallet
from custody.repositories.base import BaseRepository


class WalletRepository(BaseRepository[Wallet]):
    """Wallet repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize wallet repository."""
        super().__init__(Wallet, session)

    async def list_by_chain(
        self, blockchain: str, network: str | None = None
    ) -> list[Wallet]:
        """
        List deposit wallets of a chain.

        Args:
            blockchain: Chain name
            network: Network name (optional)

        Returns:
            Wallets ordered by id
        """
        stmt = select(Wallet).where(Wallet.blockchain == blockchain)
        if network:
            stmt = stmt.where(Wallet.network == network)
        stmt = stmt.order_by(Wallet.id)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())
