"""
Deposit poller.

One scan cycle per call: list monitored addresses, read their recent
inbound transfers and feed them to the deposit processor. Per-chain
progress lives in an explicit ChainScanState owned by the caller.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from custody.services.chains.assets import Asset
from custody.services.chains.base import ChainAdapter
from custody.services.deposit.processor import (
    DepositProcessor,
    DetectedDeposit,
    ProcessStatus,
)
from custody.services.ledger.records import WalletEntry
from custody.services.ledger.store import LedgerStore
from custody.utils.exceptions import ChainUnavailable
from custody.utils.security import mask_address


@dataclass
class ChainScanState:
    """Mutable scan state of one chain."""

    chain: str
    last_seen_height: int | None = None
    height_loaded: bool = False
    scanning: bool = False
    cycles: int = 0
    skipped_cycles: int = 0
    credited: int = 0
    duplicates: int = 0
    failed_addresses: int = 0
    last_error: str | None = None
    last_cycle_at: datetime | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "chain": self.chain,
            "last_seen_height": self.last_seen_height,
            "scanning": self.scanning,
            "cycles": self.cycles,
            "skipped_cycles": self.skipped_cycles,
            "credited": self.credited,
            "duplicates": self.duplicates,
            "failed_addresses": self.failed_addresses,
            "last_error": self.last_error,
            "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
        }


@dataclass
class ScanReport:
    """Summary of one scan cycle."""

    chain: str
    skipped: bool = False
    addresses: int = 0
    transfers: int = 0
    credited: int = 0
    duplicates: int = 0
    failed_addresses: list[str] = field(default_factory=list)
    from_height: int | None = None
    to_height: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return not self.failed_addresses and self.error is None

    def as_dict(self) -> dict[str, Any]:
        return {
            "chain": self.chain,
            "skipped": self.skipped,
            "addresses": self.addresses,
            "transfers": self.transfers,
            "credited": self.credited,
            "duplicates": self.duplicates,
            "failed_addresses": list(self.failed_addresses),
            "from_height": self.from_height,
            "to_height": self.to_height,
            "error": self.error,
        }


class DepositPoller:
    """
    Per-chain deposit scanner.

    At most one cycle runs at a time; a call made while a cycle is in
    flight returns a skipped report. Addresses are scanned in parallel
    (bounded), transfers of one address are processed sequentially.
    For range-capable chains the high-water mark only advances when
    every address of the cycle was scanned successfully.
    """

    def __init__(
        self,
        adapter: ChainAdapter,
        processor: DepositProcessor,
        store: LedgerStore,
        state: ChainScanState,
        limit: int,
        scan_assets: list[Asset] | None = None,
        concurrency: int = 5,
        max_range: int | None = None,
        initial_lookback: int = 100,
    ) -> None:
        """
        Initialize poller.

        Args:
            adapter: Chain adapter
            processor: Deposit processor
            store: Ledger store (wallets and sync height)
            state: Scan state of this chain
            limit: Recent-window size passed to the adapter
            scan_assets: Assets credited on detection, all when None
            concurrency: Addresses scanned in parallel
            max_range: Maximum blocks per cycle for range-capable chains
            initial_lookback: Blocks scanned on the very first cycle
        """
        self.adapter = adapter
        self.processor = processor
        self.store = store
        self.state = state
        self.limit = limit
        self.scan_assets = scan_assets
        self.concurrency = concurrency
        self.max_range = max_range
        self.initial_lookback = initial_lookback

    @property
    def chain(self) -> str:
        return self.adapter.chain

    async def scan_once(self) -> ScanReport:
        """
        Run one scan cycle.

        Returns:
            Scan report (skipped=True if a cycle was already running)
        """
        if self.state.scanning:
            self.state.skipped_cycles += 1
            logger.debug(f"{self.chain}: scan already in progress, skipping cycle")
            return ScanReport(chain=self.chain, skipped=True)

        self.state.scanning = True
        try:
            report = await self._scan()
        finally:
            self.state.scanning = False
            self.state.last_cycle_at = datetime.now(UTC)

        self.state.cycles += 1
        self.state.credited += report.credited
        self.state.duplicates += report.duplicates
        self.state.failed_addresses += len(report.failed_addresses)
        if report.error:
            self.state.last_error = report.error
        elif report.failed_addresses:
            self.state.last_error = (
                f"{len(report.failed_addresses)} address scan(s) failed"
            )
        else:
            self.state.last_error = None

        if report.credited:
            logger.info(
                f"{self.chain}: cycle credited {report.credited} deposit(s) "
                f"across {report.addresses} address(es)"
            )
        return report

    async def check_address(self, wallet: WalletEntry) -> ScanReport:
        """
        Scan one address over the adapter's recent window.

        Does not touch the high-water mark.

        Args:
            wallet: Monitored wallet

        Returns:
            Scan report for this address
        """
        report = ScanReport(chain=self.chain, addresses=1)
        semaphore = asyncio.Semaphore(1)
        await self._scan_address(wallet, None, None, report, semaphore)
        return report

    async def _scan(self) -> ScanReport:
        report = ScanReport(chain=self.chain)

        wallets = await self.store.list_wallets(self.chain, self.adapter.network)
        report.addresses = len(wallets)

        from_height = to_height = None
        if self.adapter.supports_range_queries:
            try:
                window = await self._next_window()
            except ChainUnavailable as e:
                logger.warning(f"{self.chain}: cannot read chain height: {e}")
                report.error = str(e)
                await self.store.record_sync_error(self.chain, str(e))
                return report

            if window is None:
                return report
            from_height, to_height = window
            report.from_height, report.to_height = from_height, to_height

        semaphore = asyncio.Semaphore(self.concurrency)
        results = await asyncio.gather(*(
            self._scan_address(wallet, from_height, to_height, report, semaphore)
            for wallet in wallets
        ))

        if to_height is not None:
            if all(results):
                self.state.last_seen_height = to_height
                await self.store.save_sync_height(self.chain, to_height)
            else:
                await self.store.record_sync_error(
                    self.chain,
                    f"{len(report.failed_addresses)} address scan(s) failed "
                    f"in {from_height}-{to_height}",
                )

        return report

    async def _next_window(self) -> tuple[int, int] | None:
        """Block/slot range for this cycle, None when nothing is new."""
        if not self.state.height_loaded:
            stored = await self.store.load_sync_height(self.chain)
            if stored is not None and self.state.last_seen_height is None:
                self.state.last_seen_height = stored
            self.state.height_loaded = True

        head = await self.adapter.get_block_height()

        if self.state.last_seen_height is None:
            from_height = max(0, head - self.initial_lookback + 1)
        else:
            from_height = self.state.last_seen_height + 1

        if from_height > head:
            return None

        to_height = head
        if self.max_range is not None:
            to_height = min(head, from_height + self.max_range - 1)
        return from_height, to_height

    async def _scan_address(
        self,
        wallet: WalletEntry,
        from_height: int | None,
        to_height: int | None,
        report: ScanReport,
        semaphore: asyncio.Semaphore,
    ) -> bool:
        """Scan and process one address; False if anything failed."""
        async with semaphore:
            try:
                transfers = await self.adapter.list_recent_inbound_transfers(
                    wallet.address,
                    self.limit,
                    from_height=from_height,
                    to_height=to_height,
                    assets=self.scan_assets,
                )
            except ChainUnavailable as e:
                logger.warning(
                    f"{self.chain}: scan of {mask_address(wallet.address)} failed: {e}"
                )
                report.failed_addresses.append(wallet.address)
                return False
            except Exception as e:
                logger.exception(
                    f"{self.chain}: unexpected error scanning "
                    f"{mask_address(wallet.address)}: {e}"
                )
                report.failed_addresses.append(wallet.address)
                return False

            for transfer in transfers:
                if transfer.amount <= 0:
                    continue
                if not self.adapter.same_address(transfer.to_address, wallet.address):
                    continue
                # Gas top-ups sent by the main pool are not user deposits
                if self.adapter.same_address(transfer.from_address, self.adapter.pool_address):
                    logger.debug(
                        f"{self.chain}: skipping pool transfer {transfer.tx_id} "
                        f"to {mask_address(wallet.address)}"
                    )
                    continue

                report.transfers += 1
                try:
                    outcome = await self.processor.process(DetectedDeposit(
                        tx_id=transfer.tx_id,
                        user_id=wallet.user_id,
                        to_address=wallet.address,
                        amount=transfer.amount,
                        currency=transfer.asset.symbol,
                        network=self.chain,
                        from_address=transfer.from_address,
                        block_height=transfer.block_height,
                        confirmed=transfer.confirmed,
                    ))
                except Exception as e:
                    logger.exception(
                        f"{self.chain}: processing {transfer.tx_id} for "
                        f"{mask_address(wallet.address)} failed: {e}"
                    )
                    report.failed_addresses.append(wallet.address)
                    return False

                if outcome.status is ProcessStatus.CREDITED:
                    report.credited += 1
                elif outcome.status is ProcessStatus.DUPLICATE:
                    report.duplicates += 1

            return True
