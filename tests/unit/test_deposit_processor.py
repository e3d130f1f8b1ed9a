"""
Unit tests for DepositProcessor.

Tests cover:
- Exactly-once crediting (sequential and concurrent)
- USD valuation with and without the oracle
- Ignored transfers
- Order id format
"""

import asyncio
import re
from decimal import Decimal

import pytest

from custody.services.deposit.processor import (
    DepositProcessor,
    DetectedDeposit,
    ProcessStatus,
    generate_order_id,
)
from custody.services.deposit.processed_tx_cache import ProcessedTxCache
from tests.fakes import FakeOracle, InMemoryLedgerStore


def make_deposit(tx_id: str = "tx_abc", amount: str = "2.5", currency: str = "SOL",
                 network: str = "solana", **kwargs) -> DetectedDeposit:
    return DetectedDeposit(
        tx_id=tx_id,
        user_id=kwargs.pop("user_id", 1),
        to_address=kwargs.pop("to_address", "addr_user1"),
        amount=Decimal(amount),
        currency=currency,
        network=network,
        **kwargs,
    )


class TestExactlyOnce:
    """Same tx_id is credited at most once."""

    @pytest.mark.asyncio
    async def test_second_presentation_is_duplicate(self, processor, store):
        """Re-processing a credited tx does not touch the balance."""
        first = await processor.process(make_deposit())
        second = await processor.process(make_deposit())

        assert first.status is ProcessStatus.CREDITED
        assert second.status is ProcessStatus.DUPLICATE
        assert len(store.deposits) == 1
        assert await store.get_balance(1, "SOL") == Decimal("2.5")

    @pytest.mark.asyncio
    async def test_stored_deposit_detected_after_restart(self, store, oracle):
        """A fresh seen-set falls back to the stored deposit."""
        await DepositProcessor(store, oracle, ProcessedTxCache()).process(make_deposit())

        restarted = DepositProcessor(store, oracle, ProcessedTxCache())
        outcome = await restarted.process(make_deposit())

        assert outcome.status is ProcessStatus.DUPLICATE
        assert "tx_abc" in restarted.seen
        assert store.create_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_presentations_credit_once(self, processor, store):
        """Racing callers produce one record; the loser sees a duplicate."""
        outcomes = await asyncio.gather(
            *(processor.process(make_deposit()) for _ in range(5))
        )

        statuses = [o.status for o in outcomes]
        assert statuses.count(ProcessStatus.CREDITED) == 1
        assert statuses.count(ProcessStatus.DUPLICATE) == 4
        assert len(store.deposits) == 1
        assert await store.get_balance(1, "SOL") == Decimal("2.5")

    @pytest.mark.asyncio
    async def test_separate_processors_share_database_dedup(self, store, oracle):
        """Two processes with their own caches still credit once."""
        a = DepositProcessor(store, oracle, ProcessedTxCache())
        b = DepositProcessor(store, oracle, ProcessedTxCache())

        outcomes = await asyncio.gather(a.process(make_deposit()), b.process(make_deposit()))

        assert sum(o.credited for o in outcomes) == 1
        assert "tx_abc" in a.seen and "tx_abc" in b.seen


class TestValuation:
    """USD rate and real arrival."""

    @pytest.mark.asyncio
    async def test_rate_and_real_arrival(self, processor):
        """2.5 SOL at 150 USD is 375 USD."""
        outcome = await processor.process(make_deposit())

        assert outcome.record.rate == Decimal("150")
        assert outcome.record.real_arrival == Decimal("375.0")

    @pytest.mark.asyncio
    async def test_rate_truncated_to_stored_scale(self, store, seen):
        """The stored value is exactly amount times the stored rate."""
        oracle = FakeOracle(prices={"SOL": Decimal("123.456789129")})
        processor = DepositProcessor(store, oracle, seen)

        outcome = await processor.process(make_deposit(amount="2.000000001"))

        assert outcome.record.rate == Decimal("123.45678912")
        assert outcome.record.real_arrival == Decimal("2.000000001") * Decimal("123.45678912")

    @pytest.mark.asyncio
    async def test_oracle_down_still_credits(self, store, seen):
        """Without a price the deposit is stored with null USD fields."""
        processor = DepositProcessor(store, FakeOracle(available=False), seen)

        outcome = await processor.process(
            make_deposit(tx_id="0xeth", amount="5", currency="ETH", network="ethereum")
        )

        assert outcome.status is ProcessStatus.CREDITED
        assert outcome.record.rate is None
        assert outcome.record.real_arrival is None
        assert await store.get_balance(1, "ETH") == Decimal("5")

    @pytest.mark.asyncio
    async def test_stablecoin_rate(self, processor):
        outcome = await processor.process(make_deposit(tx_id="tx_usdc", amount="12", currency="USDC"))
        assert outcome.record.real_arrival == Decimal("12")


class TestIgnored:
    """Transfers that never produce a deposit."""

    @pytest.mark.asyncio
    async def test_unconfirmed_ignored(self, processor, store):
        outcome = await processor.process(make_deposit(confirmed=False))

        assert outcome.status is ProcessStatus.IGNORED
        assert store.create_calls == 0
        assert "tx_abc" not in processor.seen

    @pytest.mark.asyncio
    async def test_zero_amount_ignored(self, processor, store):
        outcome = await processor.process(make_deposit(amount="0"))

        assert outcome.status is ProcessStatus.IGNORED
        assert store.deposits == {}


class TestRecordFields:
    """Stored record contents."""

    @pytest.mark.asyncio
    async def test_record_fields(self, processor):
        outcome = await processor.process(
            make_deposit(from_address="addr_sender", block_height=42)
        )
        record = outcome.record

        assert record.tx_hash == "tx_abc"
        assert record.status == "confirmed"
        assert record.type == "crypto"
        assert record.confirmations == 1
        assert record.from_address == "addr_sender"
        assert record.block_number == 42
        assert record.confirmed_at is not None

    def test_order_id_format(self):
        """DEP_<epoch ms>_<8 uppercase hex>."""
        order_id = generate_order_id()

        assert re.fullmatch(r"DEP_\d{13}_[0-9A-F]{8}", order_id)
        assert generate_order_id() != order_id
