"""
Balance repository.

Data access layer for Balance model. Balances are only ever changed by
single-statement increments and guarded decrements.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from custody.models.balance import Balance
from custody.repositories.base import BaseRepository


class BalanceRepository(BaseRepository[Balance]):
    """Balance repository with upsert semantics."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize balance repository."""
        super().__init__(Balance, session)

    async def get_amount(self, user_id: int, currency: str) -> Decimal:
        """
        Get current balance amount.

        Args:
            user_id: User ID
            currency: Currency symbol

        Returns:
            Balance amount, zero if no row exists
        """
        stmt = select(Balance.amount).where(
            Balance.user_id == user_id,
            Balance.currency == currency,
        )
        result = await self.session.execute(stmt)
        amount = result.scalar_one_or_none()
        return Decimal(str(amount)) if amount is not None else Decimal("0")

    async def increment(
        self, user_id: int, currency: str, delta: Decimal
    ) -> None:
        """
        Add delta to a balance, creating the row on first credit.

        Args:
            user_id: User ID
            currency: Currency symbol
            delta: Amount to add (may be negative)
        """
        now = datetime.now(UTC)
        values = {
            "user_id": user_id,
            "currency": currency,
            "amount": delta,
            "created_at": now,
            "updated_at": now,
        }

        if self.dialect_name == "sqlite":
            stmt = sqlite_insert(Balance).values(**values)
        else:
            stmt = pg_insert(Balance).values(**values)

        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "currency"],
            set_={
                "amount": Balance.amount + stmt.excluded.amount,
                "updated_at": now,
            },
        )
        await self.session.execute(stmt)

    async def decrement_if_sufficient(
        self, user_id: int, currency: str, amount: Decimal
    ) -> bool:
        """
        Subtract amount only when the balance covers it.

        Args:
            user_id: User ID
            currency: Currency symbol
            amount: Positive amount to subtract

        Returns:
            True if debited, False if balance was insufficient or missing
        """
        stmt = (
            update(Balance)
            .where(
                Balance.user_id == user_id,
                Balance.currency == currency,
                Balance.amount >= amount,
            )
            .values(
                amount=Balance.amount - amount,
                updated_at=datetime.now(UTC),
            )
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0
