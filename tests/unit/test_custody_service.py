"""
Unit tests for CustodyService.

The service is assembled from in-memory fakes; every cycle is driven
explicitly instead of through the scheduler.
"""

from decimal import Decimal

import pytest

from custody.services.chains.assets import TRX, usdt_trc20
from custody.services.custody_service import CustodyService
from custody.services.deposit.poller import ChainScanState, DepositPoller
from custody.services.key_vault import KeyVault
from custody.services.sweep_engine import SweepEngine, SweepStatus, default_sweep_policies
from custody.services.withdrawal.withdrawal_engine import WithdrawalEngine
from tests.fakes import FakeChainAdapter


@pytest.fixture
def tron_adapter():
    return FakeChainAdapter(
        chain="tron",
        native=TRX,
        tokens=[usdt_trc20("TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t")],
        supports_range_queries=False,
    )


@pytest.fixture
def service(adapter, tron_adapter, store, processor, oracle):
    """Solana (poll-credited) + Tron (sweep-credited USDT) service."""
    sweep = SweepEngine(
        adapter=tron_adapter,
        store=store,
        key_vault=KeyVault(None, "test"),
        processor=processor,
        policies=default_sweep_policies(tron_adapter),
        confirmation_timeout=0.05,
    )
    pollers = {
        "solana": DepositPoller(
            adapter, processor, store, ChainScanState("solana"), limit=50
        ),
        "tron": DepositPoller(
            tron_adapter, processor, store, ChainScanState("tron"), limit=50,
            scan_assets=[TRX],
        ),
    }
    adapters = {"solana": adapter, "tron": tron_adapter}
    return CustodyService(
        adapters=adapters,
        store=store,
        pollers=pollers,
        sweep_engines={"tron": sweep},
        withdrawal_engine=WithdrawalEngine(adapters, store),
        oracle=oracle,
        poll_intervals={"solana": 60, "tron": 60},
        sweep_interval=60,
    )


class TestDeposits:
    """Deposit operations."""

    @pytest.mark.asyncio
    async def test_scan_all_chains(self, service, adapter, tron_adapter, store):
        store.add_wallet(1, "addr_s1")
        store.add_wallet(2, "addr_t1", blockchain="tron")
        adapter.add_transfer("addr_s1", "sig1", "2")
        tron_adapter.add_transfer("addr_t1", "trx1", "100", asset=TRX)

        reports = await service.process_all_chains_once()

        assert reports["solana"].credited == 1
        assert reports["tron"].credited == 1
        assert await store.get_balance(2, "TRX") == Decimal("100")

    @pytest.mark.asyncio
    async def test_tron_usdt_not_credited_on_detection(self, service, tron_adapter, store):
        store.add_wallet(2, "addr_t1", blockchain="tron")
        usdt = tron_adapter.get_asset("USDT")
        tron_adapter.add_transfer("addr_t1", "usdt1", "50", asset=usdt)

        report = await service.process_deposit_scan_once("tron")

        assert report.credited == 0
        assert store.deposits == {}

    @pytest.mark.asyncio
    async def test_check_deposits_for_address(self, service, adapter, store):
        store.add_wallet(1, "addr_s1")
        adapter.add_transfer("addr_s1", "sig1", "3")

        report = await service.check_deposits_for_address("solana", "addr_s1")

        assert report.credited == 1

    @pytest.mark.asyncio
    async def test_check_unmonitored_or_invalid_address(self, service):
        unknown = await service.check_deposits_for_address("solana", "addr_nobody")
        invalid = await service.check_deposits_for_address("solana", "garbage")

        assert unknown.error == "Address is not monitored"
        assert invalid.error == "Invalid solana address"

    @pytest.mark.asyncio
    async def test_unknown_chain(self, service):
        with pytest.raises(ValueError):
            await service.process_deposit_scan_once("bitcoin")

    @pytest.mark.asyncio
    async def test_deposit_stats(self, service, adapter, tron_adapter, store):
        store.add_wallet(1, "addr_s1")
        adapter.add_transfer("addr_s1", "sig1", "2")
        adapter.add_transfer("addr_s1", "sig2", "0.5")
        await service.process_deposit_scan_once("solana")

        stats = await service.get_deposit_stats("solana")
        overview = await service.get_all_deposit_stats()

        assert stats["total_deposits"] == 2
        assert stats["total_amount"] == Decimal("2.5")
        assert stats["confirmed_deposits"] == 2
        assert overview["chains"]["tron"]["total_deposits"] == 0
        assert overview["totals"]["total_deposits"] == 2


class TestSweeps:
    """Sweep operations."""

    @pytest.mark.asyncio
    async def test_sweep_once_credits_usdt(self, service, tron_adapter, store):
        store.add_wallet(2, "addr_t1", blockchain="tron", encrypted_private_key="addr_t1")
        tron_adapter.set_balance("addr_t1", "USDT", "25")
        tron_adapter.set_balance("addr_t1", "TRX", "3")

        results = await service.sweep_once("tron")

        assert results[0].status is SweepStatus.SWEPT
        assert await store.get_balance(2, "USDT") == Decimal("25")

    @pytest.mark.asyncio
    async def test_sweep_not_enabled(self, service):
        with pytest.raises(ValueError):
            await service.sweep_once("solana")


class TestWithdrawals:
    """Withdrawal pass-through."""

    @pytest.mark.asyncio
    async def test_withdraw(self, service, adapter, store):
        adapter.set_balance("addr_pool", "SOL", "10")
        await store.upsert_balance(1, "SOL", Decimal("2"))

        tx_id = await service.withdraw(1, "addr_dest", "1", "SOL")

        assert tx_id
        assert await store.get_balance(1, "SOL") == Decimal("1")

    @pytest.mark.asyncio
    async def test_can_withdraw(self, service, adapter):
        adapter.set_balance("addr_pool", "SOL", "0.5")

        check = await service.can_withdraw("1", "SOL")

        assert check.reason == "insufficient_pool_liquidity"

    def test_schedules(self, service):
        assert "USDT" in service.get_fee_schedule()
        assert service.get_minimum_reserve()["TRX"] == Decimal("10")


class TestLifecycle:
    """Scheduler wiring and status."""

    @pytest.mark.asyncio
    async def test_start_registers_jobs(self, service):
        service.start()
        try:
            job_ids = {job.id for job in service.scheduler.get_jobs()}
            status = service.get_status()
        finally:
            await service.stop()

        assert job_ids == {"solana_deposit_scan", "tron_deposit_scan", "tron_sweep"}
        assert status["running"] is True
        assert status["chains"]["tron"]["sweep_enabled"] is True
        assert status["chains"]["solana"]["pool_address"] == "addr_pool"
        assert service.get_status()["running"] is False

    def test_states(self, service):
        assert set(service.states) == {"solana", "tron"}

    @pytest.mark.asyncio
    async def test_run_job_now_after_start(self, service, adapter, store):
        store.add_wallet(7, "addr_user")
        adapter.add_transfer("addr_user", "sig_manual", "1")
        service.start()
        try:
            assert await service.run_job_now("solana_deposit_scan") is True
            jobs = {job["id"]: job for job in service.get_status()["jobs"]}
        finally:
            await service.stop()

        assert store.balances[(7, "SOL")] == Decimal("1")
        assert jobs["solana_deposit_scan"]["runs"] >= 1

    @pytest.mark.asyncio
    async def test_run_job_now_unknown_job(self, service):
        with pytest.raises(KeyError):
            await service.run_job_now("dogecoin_sweep")
