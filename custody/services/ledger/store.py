"""
Ledger store.

Narrow persistence interface used by the custody core, and its
SQLAlchemy implementation. Every method opens its own session and
commits its own transaction.
"""

from dataclasses import asdict
from decimal import Decimal
from typing import Any, Protocol

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from custody.config.constants import (
    TRANSACTION_STATUS_PENDING,
    TRANSACTION_TYPE_SWEEP,
    TRANSACTION_TYPE_WITHDRAW,
)
from custody.models.deposit import Deposit
from custody.models.transaction import Transaction
from custody.repositories import (
    BalanceRepository,
    ChainSyncStateRepository,
    DepositRepository,
    TransactionRepository,
    WalletRepository,
)
from custody.services.ledger.records import (
    DepositRecord,
    NewDeposit,
    TransactionEntry,
    WalletEntry,
)
from custody.utils.exceptions import DuplicateTxHash, InsufficientBalance
from custody.utils.security import mask_tx_hash


class LedgerStore(Protocol):
    """Persistence capability consumed by the custody core."""

    async def find_deposit(self, tx_hash: str) -> DepositRecord | None: ...

    async def create_deposit_and_credit(self, deposit: NewDeposit) -> DepositRecord: ...

    async def upsert_balance(self, user_id: int, currency: str, delta: Decimal) -> None: ...

    async def get_balance(self, user_id: int, currency: str) -> Decimal: ...

    async def list_wallets(
        self, blockchain: str, network: str | None = None
    ) -> list[WalletEntry]: ...

    async def record_withdrawal(self, entry: TransactionEntry, debit: Decimal) -> None: ...

    async def record_transaction(self, entry: TransactionEntry) -> None: ...

    async def list_transactions(
        self, user_id: int, type: str | None = None
    ) -> list[TransactionEntry]: ...

    async def list_pending_sweeps(self, network: str) -> list[TransactionEntry]: ...

    async def set_transaction_status(self, tx_hash: str, status: str) -> None: ...

    async def deposit_stats(
        self, network: str, currency: str | None = None
    ) -> dict[str, Any]: ...

    async def load_sync_height(self, chain: str) -> int | None: ...

    async def save_sync_height(self, chain: str, height: int) -> None: ...

    async def record_sync_error(self, chain: str, error: str) -> None: ...


def _to_record(deposit: Deposit) -> DepositRecord:
    """Convert ORM deposit to a detached record."""
    return DepositRecord(
        order_id=deposit.order_id,
        tx_hash=deposit.tx_hash,
        user_id=deposit.user_id,
        to_address=deposit.to_address,
        currency=deposit.currency,
        network=deposit.network,
        amount=Decimal(str(deposit.amount)),
        status=deposit.status,
        type=deposit.type,
        confirmations=deposit.confirmations,
        from_address=deposit.from_address,
        rate=Decimal(str(deposit.rate)) if deposit.rate is not None else None,
        real_arrival=(
            Decimal(str(deposit.real_arrival))
            if deposit.real_arrival is not None
            else None
        ),
        block_number=deposit.block_number,
        created_at=deposit.created_at,
        confirmed_at=deposit.confirmed_at,
    )


def _to_entry(row: Transaction) -> TransactionEntry:
    return TransactionEntry(
        type=row.type,
        currency=row.currency,
        network=row.network,
        amount=Decimal(str(row.amount)),
        user_id=row.user_id,
        fee=Decimal(str(row.fee)),
        from_address=row.from_address,
        to_address=row.to_address,
        tx_hash=row.tx_hash,
        status=row.status,
    )


class SqlLedgerStore:
    """
    LedgerStore over async SQLAlchemy.

    The unique index on deposits.tx_hash is the final arbiter of
    at-most-once crediting.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        """
        Initialize store.

        Args:
            session_maker: Async session factory
        """
        self._session_maker = session_maker

    async def find_deposit(self, tx_hash: str) -> DepositRecord | None:
        """
        Find deposit by transaction identifier.

        Args:
            tx_hash: Transaction hash or signature

        Returns:
            Deposit record or None
        """
        async with self._session_maker() as session:
            deposit = await DepositRepository(session).get_by_tx_hash(tx_hash)
            return _to_record(deposit) if deposit else None

    async def create_deposit_and_credit(self, deposit: NewDeposit) -> DepositRecord:
        """
        Insert deposit and credit balance in one database transaction.

        Args:
            deposit: Deposit to record

        Returns:
            Stored deposit record

        Raises:
            DuplicateTxHash: If a deposit with this tx_hash already exists
        """
        fields = asdict(deposit)

        try:
            async with self._session_maker() as session:
                async with session.begin():
                    created = await DepositRepository(session).create(**fields)
                    await BalanceRepository(session).increment(
                        deposit.user_id, deposit.currency, deposit.amount
                    )
                    record = _to_record(created)
        except IntegrityError as e:
            if await self.find_deposit(deposit.tx_hash) is not None:
                raise DuplicateTxHash(deposit.tx_hash) from e
            raise

        return record

    async def upsert_balance(self, user_id: int, currency: str, delta: Decimal) -> None:
        """
        Increment (or create) a balance.

        Args:
            user_id: User ID
            currency: Currency symbol
            delta: Amount to add
        """
        async with self._session_maker() as session:
            async with session.begin():
                await BalanceRepository(session).increment(user_id, currency, delta)

    async def get_balance(self, user_id: int, currency: str) -> Decimal:
        """Get current balance, zero when absent."""
        async with self._session_maker() as session:
            return await BalanceRepository(session).get_amount(user_id, currency)

    async def list_wallets(
        self, blockchain: str, network: str | None = None
    ) -> list[WalletEntry]:
        """
        List monitored deposit wallets.

        Args:
            blockchain: Chain name
            network: Network name (optional)

        Returns:
            Wallet entries
        """
        async with self._session_maker() as session:
            wallets = await WalletRepository(session).list_by_chain(blockchain, network)
            return [
                WalletEntry(
                    user_id=wallet.user_id,
                    address=wallet.public_key,
                    blockchain=wallet.blockchain,
                    network=wallet.network,
                    encrypted_private_key=wallet.encrypted_private_key,
                )
                for wallet in wallets
            ]

    async def record_withdrawal(self, entry: TransactionEntry, debit: Decimal) -> None:
        """
        Debit user balance and journal the withdrawal atomically.

        Args:
            entry: Journal entry (amount is negative)
            debit: Positive amount to subtract from the balance

        Raises:
            InsufficientBalance: If the balance no longer covers the debit
        """
        if entry.user_id is None:
            raise ValueError("Withdrawal entry requires user_id")

        async with self._session_maker() as session:
            async with session.begin():
                debited = await BalanceRepository(session).decrement_if_sufficient(
                    entry.user_id, entry.currency, debit
                )
                if not debited:
                    raise InsufficientBalance(
                        f"Balance of user {entry.user_id} does not cover "
                        f"{debit} {entry.currency}"
                    )
                await TransactionRepository(session).create(
                    **asdict(entry) | {"type": TRANSACTION_TYPE_WITHDRAW}
                )

        logger.info(
            f"Withdrawal journaled: user={entry.user_id}, "
            f"{entry.amount} {entry.currency}, tx={mask_tx_hash(entry.tx_hash)}"
        )

    async def record_transaction(self, entry: TransactionEntry) -> None:
        """
        Journal a sweep or gas top-up.

        Args:
            entry: Journal entry
        """
        async with self._session_maker() as session:
            async with session.begin():
                await TransactionRepository(session).create(**asdict(entry))

    async def list_transactions(
        self, user_id: int, type: str | None = None
    ) -> list[TransactionEntry]:
        """
        List journal entries of a user, oldest first.

        Args:
            user_id: User ID
            type: Entry type filter (withdraw, sweep, gas_topup)

        Returns:
            Journal entries
        """
        async with self._session_maker() as session:
            rows = await TransactionRepository(session).list_for_user(user_id, type)
            return [_to_entry(row) for row in rows]

    async def list_pending_sweeps(self, network: str) -> list[TransactionEntry]:
        """
        Sweeps of a chain not yet confirmed and settled.

        Args:
            network: Chain name

        Returns:
            Pending sweep entries, oldest first
        """
        async with self._session_maker() as session:
            rows = await TransactionRepository(session).list_by_status(
                network, TRANSACTION_TYPE_SWEEP, TRANSACTION_STATUS_PENDING
            )
            return [_to_entry(row) for row in rows]

    async def set_transaction_status(self, tx_hash: str, status: str) -> None:
        """
        Move a journal entry to a new status.

        Args:
            tx_hash: Journal entry tx hash
            status: New status
        """
        async with self._session_maker() as session:
            async with session.begin():
                updated = await TransactionRepository(session).set_status(tx_hash, status)
        if not updated:
            logger.warning(f"No journal entry for {mask_tx_hash(tx_hash)}")

    async def deposit_stats(
        self, network: str, currency: str | None = None
    ) -> dict[str, Any]:
        """Aggregate deposit statistics for a network."""
        async with self._session_maker() as session:
            return await DepositRepository(session).get_stats(network, currency)

    async def load_sync_height(self, chain: str) -> int | None:
        """Load persisted scan height."""
        async with self._session_maker() as session:
            return await ChainSyncStateRepository(session).get_height(chain)

    async def save_sync_height(self, chain: str, height: int) -> None:
        """Persist scan height."""
        async with self._session_maker() as session:
            async with session.begin():
                await ChainSyncStateRepository(session).save_height(chain, height)

    async def record_sync_error(self, chain: str, error: str) -> None:
        """Persist a scan error for the chain."""
        async with self._session_maker() as session:
            async with session.begin():
                await ChainSyncStateRepository(session).record_error(chain, error)
