"""
Integration tests for SqlLedgerStore.

Runs against a file-backed SQLite database (aiosqlite) created from the
model metadata.
"""

import asyncio
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from custody.config.database import create_engine, create_session_maker
from custody.models import Base, Wallet
from custody.services.deposit.processed_tx_cache import ProcessedTxCache
from custody.services.deposit.processor import DepositProcessor, DetectedDeposit, ProcessStatus
from custody.services.ledger.records import NewDeposit, TransactionEntry
from custody.services.ledger.store import SqlLedgerStore
from custody.utils.exceptions import DuplicateTxHash, InsufficientBalance
from tests.fakes import FakeOracle

pytestmark = pytest.mark.integration


@pytest.fixture
async def session_maker(tmp_path):
    """Session factory over a fresh SQLite database."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield create_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def sql_store(session_maker):
    return SqlLedgerStore(session_maker)


def new_deposit(tx_hash: str = "sig_1", amount: str = "2.5", order_id: str = "DEP_1_AAAAAAAA") -> NewDeposit:
    return NewDeposit(
        order_id=order_id,
        tx_hash=tx_hash,
        user_id=1,
        to_address="addr_u1",
        currency="SOL",
        network="solana",
        amount=Decimal(amount),
        status="confirmed",
        type="crypto",
        confirmations=1,
        rate=Decimal("150"),
        real_arrival=Decimal(amount) * 150,
        block_number=100,
        confirmed_at=datetime.now(UTC),
    )


class TestDeposits:
    """Deposit insert and dedup."""

    @pytest.mark.asyncio
    async def test_create_and_find(self, sql_store):
        record = await sql_store.create_deposit_and_credit(new_deposit())
        found = await sql_store.find_deposit("sig_1")

        assert record.tx_hash == "sig_1"
        assert found.order_id == "DEP_1_AAAAAAAA"
        assert found.amount == Decimal("2.5")
        assert await sql_store.get_balance(1, "SOL") == Decimal("2.5")

    @pytest.mark.asyncio
    async def test_duplicate_tx_hash_credits_once(self, sql_store):
        await sql_store.create_deposit_and_credit(new_deposit())

        with pytest.raises(DuplicateTxHash):
            await sql_store.create_deposit_and_credit(
                new_deposit(order_id="DEP_2_BBBBBBBB")
            )

        assert await sql_store.get_balance(1, "SOL") == Decimal("2.5")

    @pytest.mark.asyncio
    async def test_concurrent_processors_credit_once(self, sql_store):
        """Two processes with separate caches race on the unique index."""
        oracle = FakeOracle()
        deposit = DetectedDeposit(
            tx_id="sig_race",
            user_id=1,
            to_address="addr_u1",
            amount=Decimal("1"),
            currency="SOL",
            network="solana",
        )
        processors = [DepositProcessor(sql_store, oracle, ProcessedTxCache()) for _ in range(3)]

        outcomes = await asyncio.gather(*(p.process(deposit) for p in processors))

        assert [o.status for o in outcomes].count(ProcessStatus.CREDITED) == 1
        assert await sql_store.get_balance(1, "SOL") == Decimal("1")

    @pytest.mark.asyncio
    async def test_missing_deposit(self, sql_store):
        assert await sql_store.find_deposit("nope") is None

    @pytest.mark.asyncio
    async def test_deposit_stats(self, sql_store):
        await sql_store.create_deposit_and_credit(new_deposit("a", "2"))
        await sql_store.create_deposit_and_credit(new_deposit("b", "3", order_id="DEP_2_BBBBBBBB"))

        stats = await sql_store.deposit_stats("solana")
        empty = await sql_store.deposit_stats("tron")

        assert stats["total_deposits"] == 2
        assert stats["total_amount"] == Decimal("5")
        assert stats["confirmed_deposits"] == 2
        assert stats["pending_deposits"] == 0
        assert empty["total_deposits"] == 0
        assert empty["total_amount"] == Decimal("0")


class TestBalances:
    """Upsert and guarded debit."""

    @pytest.mark.asyncio
    async def test_upsert_creates_then_increments(self, sql_store):
        await sql_store.upsert_balance(5, "USDT", Decimal("10"))
        await sql_store.upsert_balance(5, "USDT", Decimal("2.5"))

        assert await sql_store.get_balance(5, "USDT") == Decimal("12.5")
        assert await sql_store.get_balance(5, "TRX") == Decimal("0")

    @pytest.mark.asyncio
    async def test_record_withdrawal(self, sql_store):
        await sql_store.upsert_balance(5, "USDT", Decimal("10"))
        entry = TransactionEntry(
            type="withdraw",
            user_id=5,
            currency="USDT",
            network="tron",
            amount=Decimal("-4"),
            fee=Decimal("1"),
            to_address="Tdest",
            tx_hash="wd_1",
        )

        await sql_store.record_withdrawal(entry, debit=Decimal("4"))

        assert await sql_store.get_balance(5, "USDT") == Decimal("6")
        [journaled] = await sql_store.list_transactions(5)
        assert journaled.amount == Decimal("-4")
        assert journaled.tx_hash == "wd_1"

    @pytest.mark.asyncio
    async def test_withdrawal_never_overdraws(self, sql_store):
        await sql_store.upsert_balance(5, "USDT", Decimal("3"))
        entry = TransactionEntry(
            type="withdraw", user_id=5, currency="USDT", network="tron", amount=Decimal("-4")
        )

        with pytest.raises(InsufficientBalance):
            await sql_store.record_withdrawal(entry, debit=Decimal("4"))

        assert await sql_store.get_balance(5, "USDT") == Decimal("3")
        assert await sql_store.list_transactions(5) == []


class TestJournalAndWallets:
    """Transaction journal and wallet listing."""

    @pytest.mark.asyncio
    async def test_list_transactions_by_type(self, sql_store):
        for kind in ("gas_topup", "sweep"):
            await sql_store.record_transaction(TransactionEntry(
                type=kind, user_id=9, currency="TRX", network="tron", amount=Decimal("2"),
            ))

        sweeps = await sql_store.list_transactions(9, type="sweep")
        everything = await sql_store.list_transactions(9)

        assert [t.type for t in sweeps] == ["sweep"]
        assert [t.type for t in everything] == ["gas_topup", "sweep"]

    @pytest.mark.asyncio
    async def test_list_wallets(self, sql_store, session_maker):
        async with session_maker() as session:
            async with session.begin():
                session.add_all([
                    Wallet(user_id=1, blockchain="solana", network="devnet", public_key="So1"),
                    Wallet(user_id=2, blockchain="solana", network="mainnet", public_key="So2"),
                    Wallet(user_id=3, blockchain="tron", network="shasta", public_key="Tr1",
                           encrypted_private_key="token"),
                ])

        devnet = await sql_store.list_wallets("solana", "devnet")
        solana = await sql_store.list_wallets("solana")
        tron = await sql_store.list_wallets("tron")

        assert [w.address for w in devnet] == ["So1"]
        assert [w.user_id for w in solana] == [1, 2]
        assert tron[0].encrypted_private_key == "token"

    @pytest.mark.asyncio
    async def test_pending_sweeps_by_status(self, sql_store):
        for tx_hash, status in (("sw_1", "pending"), ("sw_2", "confirmed"), ("sw_3", "pending")):
            await sql_store.record_transaction(TransactionEntry(
                type="sweep", user_id=9, currency="USDT", network="tron",
                amount=Decimal("50"), tx_hash=tx_hash, status=status,
            ))
        await sql_store.record_transaction(TransactionEntry(
            type="sweep", user_id=9, currency="SOL", network="solana",
            amount=Decimal("1"), tx_hash="sw_4", status="pending",
        ))

        await sql_store.set_transaction_status("sw_3", "confirmed")
        await sql_store.set_transaction_status("missing", "failed")

        pending = await sql_store.list_pending_sweeps("tron")
        assert [t.tx_hash for t in pending] == ["sw_1"]
        assert pending[0].status == "pending"
        assert pending[0].amount == Decimal("50")


class TestSyncState:
    """Persisted scan progress."""

    @pytest.mark.asyncio
    async def test_height_round_trip(self, sql_store):
        assert await sql_store.load_sync_height("ethereum") is None

        await sql_store.save_sync_height("ethereum", 1200)
        await sql_store.save_sync_height("ethereum", 1250)

        assert await sql_store.load_sync_height("ethereum") == 1250

    @pytest.mark.asyncio
    async def test_error_before_first_height(self, sql_store):
        """An early error does not invent a scan height."""
        await sql_store.record_sync_error("solana", "rpc down")

        assert await sql_store.load_sync_height("solana") is None

        await sql_store.save_sync_height("solana", 42)
        assert await sql_store.load_sync_height("solana") == 42
