"""
Custody service.

Top-level orchestrator owning the chain adapters, per-chain scan state,
deposit pollers, sweep engines, the withdrawal engine and the poll
scheduler. Exposes the operations used by the request layer and jobs.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from custody.services.chains.base import ChainAdapter
from custody.services.deposit.poller import ChainScanState, DepositPoller, ScanReport
from custody.services.ledger.store import LedgerStore
from custody.services.oracle import PriceOracle
from custody.services.scheduler import JobMonitor, create_scheduler
from custody.services.sweep_engine import SweepEngine, SweepResult
from custody.services.withdrawal.withdrawal_engine import WithdrawalCheck, WithdrawalEngine


class CustodyService:
    """
    Multi-chain custody orchestrator.

    All per-chain state lives in the ChainScanState objects held here,
    so tests can drive every cycle deterministically through
    process_deposit_scan_once and sweep_once.
    """

    def __init__(
        self,
        adapters: dict[str, ChainAdapter],
        store: LedgerStore,
        pollers: dict[str, DepositPoller],
        sweep_engines: dict[str, SweepEngine],
        withdrawal_engine: WithdrawalEngine,
        oracle: PriceOracle | None = None,
        scheduler: AsyncIOScheduler | None = None,
        poll_intervals: dict[str, float] | None = None,
        sweep_interval: float = 60.0,
        shutdown_timeout: float = 10.0,
    ) -> None:
        """
        Initialize custody service.

        Args:
            adapters: Chain adapters by chain name
            store: Ledger store
            pollers: Deposit pollers by chain name
            sweep_engines: Sweep engines by chain name (sweep-enabled chains only)
            withdrawal_engine: Withdrawal engine
            oracle: Price oracle, closed on stop
            scheduler: APScheduler instance, see create_scheduler
            poll_intervals: Deposit poll cadence per chain in seconds
            sweep_interval: Sweep cadence in seconds
            shutdown_timeout: Seconds stop() waits for in-flight jobs
        """
        self.adapters = adapters
        self.store = store
        self.pollers = pollers
        self.sweep_engines = sweep_engines
        self.withdrawal_engine = withdrawal_engine
        self.oracle = oracle
        self.scheduler = scheduler or create_scheduler()
        self.jobs = JobMonitor()
        self.jobs.attach(self.scheduler)
        self.poll_intervals = poll_intervals or {}
        self.sweep_interval = sweep_interval
        self.shutdown_timeout = shutdown_timeout

    @property
    def chains(self) -> list[str]:
        return list(self.adapters)

    @property
    def states(self) -> dict[str, ChainScanState]:
        return {chain: poller.state for chain, poller in self.pollers.items()}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Register per-chain jobs and start the scheduler."""
        if self.scheduler.running:
            return

        for chain, poller in self.pollers.items():
            self._add_job(
                f"{chain}_deposit_scan",
                poller.scan_once,
                self.poll_intervals.get(chain, 5.0),
                f"{chain.capitalize()} deposit scan",
            )
        for chain, engine in self.sweep_engines.items():
            self._add_job(
                f"{chain}_sweep",
                engine.sweep_all,
                self.sweep_interval,
                f"{chain.capitalize()} sweep",
            )

        self.scheduler.start()
        logger.info(
            f"Custody service started: chains={', '.join(self.chains)}, "
            f"sweeping={', '.join(self.sweep_engines) or 'none'}"
        )

    async def stop(self) -> None:
        """Stop the scheduler and release network resources."""
        if self.scheduler.running:
            # No new ticks while in-flight cycles finish
            self.scheduler.pause()
            await self.jobs.wait_idle(self.shutdown_timeout)
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

        for chain, adapter in self.adapters.items():
            try:
                await adapter.close()
            except Exception as e:
                logger.warning(f"Error closing {chain} adapter: {e}")

        if self.oracle is not None:
            await self.oracle.close()

        logger.info("Custody service stopped")

    async def run_job_now(self, job_id: str) -> bool:
        """
        Trigger a registered job outside its schedule and wait for it.

        Returns:
            False if a run of the job was already in flight

        Raises:
            KeyError: If the job is not registered (start() registers jobs)
        """
        return await self.jobs.run_now(job_id)

    def get_status(self) -> dict[str, Any]:
        """
        Runtime status of every chain and job.

        Returns:
            Dict with running flag, per-chain scan state and job counters
        """
        chains = {}
        for chain in self.chains:
            poller = self.pollers.get(chain)
            engine = self.sweep_engines.get(chain)
            adapter = self.adapters[chain]
            chains[chain] = {
                "network": adapter.network,
                "pool_address": adapter.pool_address,
                "scan": poller.state.as_dict() if poller else None,
                "sweep_enabled": engine is not None,
                "pending_sweeps": engine.pending_count if engine else 0,
            }

        jobs = []
        for job in self.scheduler.get_jobs():
            next_run_time = getattr(job, "next_run_time", None)
            jobs.append(
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run_time": next_run_time.isoformat() if next_run_time else None,
                    **self.jobs.stats(job.id).as_dict(),
                }
            )

        return {
            "running": self.scheduler.running,
            "chains": chains,
            "jobs": jobs,
        }

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------

    async def process_deposit_scan_once(self, chain: str) -> ScanReport:
        """
        Run one deposit scan cycle of a chain.

        Args:
            chain: Chain name

        Returns:
            Scan report
        """
        return await self._poller(chain).scan_once()

    async def process_all_chains_once(self) -> dict[str, ScanReport]:
        """Run one deposit scan cycle on every chain, one chain after another."""
        reports = {}
        for chain in self.pollers:
            reports[chain] = await self.process_deposit_scan_once(chain)
        return reports

    async def check_deposits_for_address(self, chain: str, address: str) -> ScanReport:
        """
        Scan a single monitored address on demand.

        Args:
            chain: Chain name
            address: Deposit address

        Returns:
            Scan report; error is set when the address is not monitored
        """
        poller = self._poller(chain)
        adapter = poller.adapter

        if not adapter.is_valid_address(address):
            return ScanReport(chain=chain, error=f"Invalid {chain} address")

        wallets = await self.store.list_wallets(adapter.chain, adapter.network)
        wallet = next((w for w in wallets if adapter.same_address(w.address, address)), None)
        if wallet is None:
            return ScanReport(chain=chain, error="Address is not monitored")

        logger.info(f"{chain}: manual deposit check for user {wallet.user_id}")
        return await poller.check_address(wallet)

    async def get_deposit_stats(self, chain: str) -> dict[str, Any]:
        """
        Deposit statistics of a chain.

        Returns:
            {total_deposits, total_amount, pending_deposits, confirmed_deposits}
        """
        adapter = self._adapter(chain)
        return await self.store.deposit_stats(adapter.chain)

    async def get_all_deposit_stats(self) -> dict[str, Any]:
        """Deposit statistics per chain plus deposit counts over all chains."""
        per_chain = {chain: await self.get_deposit_stats(chain) for chain in self.chains}
        totals = {
            key: sum(stats[key] for stats in per_chain.values())
            for key in ("total_deposits", "pending_deposits", "confirmed_deposits")
        }
        return {"chains": per_chain, "totals": totals}

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    async def sweep_once(self, chain: str) -> list[SweepResult]:
        """
        Run one sweep cycle of a chain.

        Raises:
            ValueError: If sweeping is not enabled for the chain
        """
        engine = self.sweep_engines.get(chain.lower())
        if engine is None:
            raise ValueError(f"Sweeping is not enabled for {chain}")
        return await engine.sweep_all()

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    async def withdraw(
        self,
        user_id: int,
        to_address: str,
        amount: Decimal | int | str,
        currency: str,
        network: str | None = None,
    ) -> str:
        """Pay a withdrawal from the main pool, see WithdrawalEngine.withdraw."""
        return await self.withdrawal_engine.withdraw(
            user_id, to_address, amount, currency, network
        )

    async def can_withdraw(
        self,
        amount: Decimal | int | str,
        currency: str,
        network: str | None = None,
    ) -> WithdrawalCheck:
        return await self.withdrawal_engine.can_withdraw(amount, currency, network)

    def get_fee_schedule(self) -> dict[str, Decimal]:
        return self.withdrawal_engine.get_fee_schedule()

    def get_minimum_reserve(self) -> dict[str, Decimal]:
        return self.withdrawal_engine.get_minimum_reserve()

    def _adapter(self, chain: str) -> ChainAdapter:
        try:
            return self.adapters[chain.lower()]
        except KeyError:
            raise ValueError(f"Unknown or disabled chain: {chain}") from None

    def _poller(self, chain: str) -> DepositPoller:
        self._adapter(chain)
        return self.pollers[chain.lower()]

    def _add_job(self, job_id: str, func, interval: float, name: str) -> None:
        if self.scheduler.get_job(job_id) is not None:
            return
        self.scheduler.add_job(
            self.jobs.wrap(job_id, func),
            trigger=IntervalTrigger(seconds=interval),
            id=job_id,
            name=name,
            next_run_time=datetime.now(UTC),
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Scheduled job '{name}' every {interval}s")
