"""
Sweep engine.

Consolidates deposit address balances into the chain's main pool.
Balances are always re-read from the chain, so a failed sweep is simply
attempted again on the next cycle.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from loguru import logger

from custody.config.constants import (
    CHAIN_ETHEREUM,
    CHAIN_SOLANA,
    CHAIN_TRON,
    ETHEREUM_ETH_SWEEP_FEE_BUFFER,
    ETHEREUM_GAS_TOPUP_ETH,
    ETHEREUM_MIN_GAS_ETH,
    ETHEREUM_MIN_SWEEP_ETH,
    ETHEREUM_MIN_SWEEP_TOKEN,
    SOLANA_GAS_TOPUP_SOL,
    SOLANA_MIN_GAS_SOL,
    SOLANA_MIN_SWEEP_SOL,
    SOLANA_MIN_SWEEP_USDC,
    SOLANA_SOL_SWEEP_FEE_BUFFER,
    TRANSACTION_STATUS_CONFIRMED,
    TRANSACTION_STATUS_FAILED,
    TRANSACTION_STATUS_PENDING,
    TRANSACTION_TYPE_GAS_TOPUP,
    TRANSACTION_TYPE_SWEEP,
    TRON_GAS_TOPUP_TRX,
    TRON_MIN_GAS_TRX,
    TRON_MIN_SWEEP_TRX,
    TRON_MIN_SWEEP_USDT,
    TRON_TRX_SWEEP_FEE_BUFFER,
)
from custody.services.chains.assets import Asset
from custody.services.chains.base import ChainAdapter
from custody.services.deposit.processor import DepositProcessor, DetectedDeposit
from custody.services.key_vault import KeyVault
from custody.services.ledger.records import TransactionEntry, WalletEntry
from custody.services.ledger.store import LedgerStore
from custody.utils.exceptions import (
    ConfirmationTimeout,
    CustodyError,
    SecurityError,
    TransferRejected,
)
from custody.utils.security import mask_address, mask_tx_hash
from custody.utils.units import truncate


@dataclass(frozen=True)
class SweepPolicy:
    """
    Sweep rule for one asset.

    Native sweeps keep fee_buffer behind for the transfer fee; token
    sweeps move the full balance and top up native gas from the pool
    when the address holds less than min_gas_balance.
    """

    asset: Asset
    min_sweep_amount: Decimal
    fee_buffer: Decimal = Decimal("0")
    gas_topup_amount: Decimal = Decimal("0")
    min_gas_balance: Decimal = Decimal("0")
    credit_on_sweep: bool = False


class SweepStatus(str, Enum):
    SWEPT = "swept"
    PENDING = "pending"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class SweepResult:
    """Outcome of one sweep attempt."""

    address: str
    asset: str
    status: SweepStatus
    amount: Decimal = Decimal("0")
    tx_id: str | None = None
    topup_tx_id: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class _PendingSweep:
    wallet: WalletEntry
    policy: SweepPolicy
    amount: Decimal
    tx_id: str


def default_sweep_policies(adapter: ChainAdapter) -> list[SweepPolicy]:
    """
    Default sweep rules per chain.

    Tron USDT is credited to the user when swept; every other asset is
    credited by the deposit poller on detection.
    """
    native = adapter.native_asset
    tokens = [asset for asset in adapter.assets if not asset.is_native]

    if adapter.chain == CHAIN_TRON:
        return [
            *(
                SweepPolicy(
                    asset=token,
                    min_sweep_amount=TRON_MIN_SWEEP_USDT,
                    gas_topup_amount=TRON_GAS_TOPUP_TRX,
                    min_gas_balance=TRON_MIN_GAS_TRX,
                    credit_on_sweep=True,
                )
                for token in tokens
            ),
            SweepPolicy(
                asset=native,
                min_sweep_amount=TRON_MIN_SWEEP_TRX,
                fee_buffer=TRON_TRX_SWEEP_FEE_BUFFER,
            ),
        ]

    if adapter.chain == CHAIN_SOLANA:
        return [
            *(
                SweepPolicy(
                    asset=token,
                    min_sweep_amount=SOLANA_MIN_SWEEP_USDC,
                    gas_topup_amount=SOLANA_GAS_TOPUP_SOL,
                    min_gas_balance=SOLANA_MIN_GAS_SOL,
                )
                for token in tokens
            ),
            SweepPolicy(
                asset=native,
                min_sweep_amount=SOLANA_MIN_SWEEP_SOL,
                fee_buffer=SOLANA_SOL_SWEEP_FEE_BUFFER,
            ),
        ]

    if adapter.chain == CHAIN_ETHEREUM:
        return [
            *(
                SweepPolicy(
                    asset=token,
                    min_sweep_amount=ETHEREUM_MIN_SWEEP_TOKEN,
                    gas_topup_amount=ETHEREUM_GAS_TOPUP_ETH,
                    min_gas_balance=ETHEREUM_MIN_GAS_ETH,
                )
                for token in tokens
            ),
            SweepPolicy(
                asset=native,
                min_sweep_amount=ETHEREUM_MIN_SWEEP_ETH,
                fee_buffer=ETHEREUM_ETH_SWEEP_FEE_BUFFER,
            ),
        ]

    return []


class SweepEngine:
    """
    Moves deposit address funds into the main pool.

    A sweep is only credited (credit_on_sweep policies) after its
    transaction is confirmed. Every sweep is journaled as pending right
    after submission; entries not settled in the same call (confirmation
    timeout, credit failure, process restart) are re-checked from the
    journal on the next cycle. The same wallet and asset are not swept
    again while pending.
    """

    def __init__(
        self,
        adapter: ChainAdapter,
        store: LedgerStore,
        key_vault: KeyVault,
        processor: DepositProcessor,
        policies: list[SweepPolicy],
        confirmation_timeout: float = 60.0,
    ) -> None:
        """
        Initialize sweep engine.

        Args:
            adapter: Chain adapter
            store: Ledger store
            key_vault: Decrypts deposit wallet keys
            processor: Deposit processor for sweep-time credits
            policies: Sweep rules
            confirmation_timeout: Seconds to wait for top-ups and sweeps
        """
        self.adapter = adapter
        self.store = store
        self.key_vault = key_vault
        self.processor = processor
        self.policies = policies
        self.confirmation_timeout = confirmation_timeout
        self._pending: dict[tuple[str, str], _PendingSweep] = {}

    @property
    def chain(self) -> str:
        return self.adapter.chain

    @property
    def credited_assets(self) -> set[str]:
        """Symbols credited at sweep time instead of on detection."""
        return {p.asset.symbol for p in self.policies if p.credit_on_sweep}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def sweep_all(self) -> list[SweepResult]:
        """
        Run one sweep cycle over every wallet of the chain.

        Returns:
            Results of all attempts made this cycle
        """
        results = await self._resolve_pending()

        wallets = await self.store.list_wallets(self.chain, self.adapter.network)
        for wallet in wallets:
            for policy in self.policies:
                results.append(await self.maybe_sweep(wallet, policy))

        swept = sum(1 for r in results if r.status is SweepStatus.SWEPT)
        failed = sum(1 for r in results if r.status is SweepStatus.FAILED)
        if swept or failed:
            logger.info(f"{self.chain}: sweep cycle done, swept={swept}, failed={failed}")
        return results

    async def maybe_sweep(self, wallet: WalletEntry, policy: SweepPolicy) -> SweepResult:
        """
        Sweep one asset of one wallet if its balance reached the threshold.

        Args:
            wallet: Deposit wallet
            policy: Sweep rule

        Returns:
            Sweep result; failures are logged and reported, never raised
        """
        symbol = policy.asset.symbol
        pool = self.adapter.pool_address

        if not pool:
            return SweepResult(wallet.address, symbol, SweepStatus.SKIPPED, reason="no pool address")
        if self.adapter.same_address(wallet.address, pool):
            return SweepResult(wallet.address, symbol, SweepStatus.SKIPPED, reason="pool wallet")
        if (wallet.address, symbol) in self._pending:
            return SweepResult(wallet.address, symbol, SweepStatus.PENDING, reason="awaiting confirmation")

        topup_tx_id = None
        tx_id = None
        amount = Decimal("0")
        try:
            balance = await self.adapter.get_balance(wallet.address, policy.asset)
            if balance < policy.min_sweep_amount:
                return SweepResult(wallet.address, symbol, SweepStatus.SKIPPED, reason="below threshold")

            amount = balance - policy.fee_buffer if policy.asset.is_native else balance
            amount = truncate(amount, policy.asset.decimals)
            if amount <= 0:
                return SweepResult(wallet.address, symbol, SweepStatus.SKIPPED, reason="nothing after fee buffer")

            logger.info(
                f"{self.chain}: sweeping {amount} {symbol} from "
                f"{mask_address(wallet.address)} (user {wallet.user_id})"
            )

            signer = self._load_wallet_signer(wallet)
            if not policy.asset.is_native and policy.gas_topup_amount > 0:
                topup_tx_id = await self._ensure_gas(wallet, policy, pool)

            tx_id = await self.adapter.submit_transfer(signer, pool, amount, policy.asset)
            # Pending until settled here or by a later cycle
            self._pending[(wallet.address, symbol)] = _PendingSweep(wallet, policy, amount, tx_id)
            await self.store.record_transaction(TransactionEntry(
                type=TRANSACTION_TYPE_SWEEP,
                user_id=wallet.user_id,
                currency=symbol,
                network=self.chain,
                amount=amount,
                from_address=wallet.address,
                to_address=pool,
                tx_hash=tx_id,
                status=TRANSACTION_STATUS_PENDING,
            ))

            receipt = await self.adapter.wait_for_confirmation(tx_id, self.confirmation_timeout)
            if not receipt.success:
                del self._pending[(wallet.address, symbol)]
                await self._mark(tx_id, TRANSACTION_STATUS_FAILED)
                raise TransferRejected(self.chain, f"sweep {tx_id} failed on chain: {receipt.error}")

            await self._complete(wallet, policy, amount, tx_id)
            del self._pending[(wallet.address, symbol)]

        except ConfirmationTimeout as e:
            if tx_id is None:
                # Top-up still in flight; the next cycle sees the gas balance
                logger.warning(f"{self.chain}: gas top-up for {mask_address(wallet.address)} pending: {e}")
                return SweepResult(
                    wallet.address, symbol, SweepStatus.FAILED, amount,
                    topup_tx_id=e.tx_id, reason="gas top-up not confirmed",
                )
            logger.warning(
                f"{self.chain}: sweep {mask_tx_hash(tx_id)} not confirmed yet, "
                "will re-check next cycle"
            )
            return SweepResult(
                wallet.address, symbol, SweepStatus.PENDING, amount, tx_id, topup_tx_id
            )
        except CustodyError as e:
            if (wallet.address, symbol) not in self._pending:
                logger.error(
                    f"{self.chain}: sweep of {symbol} from {mask_address(wallet.address)} failed: {e}"
                )
                return SweepResult(
                    wallet.address, symbol, SweepStatus.FAILED, amount, tx_id, topup_tx_id, str(e)
                )
            logger.error(
                f"{self.chain}: settling sweep {mask_tx_hash(tx_id)} failed, "
                f"will retry next cycle: {e}"
            )
            return SweepResult(
                wallet.address, symbol, SweepStatus.PENDING, amount, tx_id, topup_tx_id, str(e)
            )
        except Exception as e:
            if tx_id is None:
                logger.exception(
                    f"{self.chain}: sweep of {symbol} from {mask_address(wallet.address)} failed: {e}"
                )
                return SweepResult(
                    wallet.address, symbol, SweepStatus.FAILED, amount, None, topup_tx_id, str(e)
                )
            # Funds already moved: keep the sweep pending until it is settled
            logger.exception(
                f"{self.chain}: settling sweep {mask_tx_hash(tx_id)} failed, "
                f"will retry next cycle: {e}"
            )
            return SweepResult(
                wallet.address, symbol, SweepStatus.PENDING, amount, tx_id, topup_tx_id, str(e)
            )

        return SweepResult(wallet.address, symbol, SweepStatus.SWEPT, amount, tx_id, topup_tx_id)

    async def _ensure_gas(self, wallet: WalletEntry, policy: SweepPolicy, pool: str) -> str | None:
        """
        Top up native gas from the pool and wait for it to confirm.

        Returns:
            Top-up transaction id, None if the address already had enough gas
        """
        native = self.adapter.native_asset
        gas_balance = await self.adapter.get_balance(wallet.address, native)
        if gas_balance >= policy.min_gas_balance:
            return None

        logger.info(
            f"{self.chain}: topping up {policy.gas_topup_amount} {native.symbol} "
            f"to {mask_address(wallet.address)} for {policy.asset.symbol} sweep"
        )
        topup_tx_id = await self.adapter.submit_transfer(
            self.adapter.pool_signer, wallet.address, policy.gas_topup_amount, native
        )
        receipt = await self.adapter.wait_for_confirmation(topup_tx_id, self.confirmation_timeout)
        if not receipt.success:
            raise TransferRejected(self.chain, f"gas top-up {topup_tx_id} failed: {receipt.error}")

        await self.store.record_transaction(TransactionEntry(
            type=TRANSACTION_TYPE_GAS_TOPUP,
            user_id=wallet.user_id,
            currency=native.symbol,
            network=self.chain,
            amount=policy.gas_topup_amount,
            from_address=pool,
            to_address=wallet.address,
            tx_hash=topup_tx_id,
            status=TRANSACTION_STATUS_CONFIRMED,
        ))
        return topup_tx_id

    def _load_wallet_signer(self, wallet: WalletEntry) -> Any:
        secret = self.key_vault.decrypt(wallet.encrypted_private_key or "")
        signer = self.adapter.load_signer(secret)
        if not self.adapter.same_address(self.adapter.signer_address(signer), wallet.address):
            raise SecurityError(
                f"Stored key does not control {mask_address(wallet.address)}"
            )
        return signer

    async def _complete(
        self, wallet: WalletEntry, policy: SweepPolicy, amount: Decimal, tx_id: str
    ) -> None:
        """Credit a confirmed sweep when the policy requires it, then settle it."""
        if policy.credit_on_sweep:
            await self.processor.process(DetectedDeposit(
                tx_id=tx_id,
                user_id=wallet.user_id,
                to_address=wallet.address,
                amount=amount,
                currency=policy.asset.symbol,
                network=self.chain,
                from_address=wallet.address,
            ))

        await self._mark(tx_id, TRANSACTION_STATUS_CONFIRMED)
        logger.success(
            f"{self.chain}: swept {amount} {policy.asset.symbol} from "
            f"{mask_address(wallet.address)}, tx={mask_tx_hash(tx_id)}"
        )

    async def _mark(self, tx_id: str, status: str) -> None:
        """Update the sweep journal entry; a failed update is retried next cycle."""
        try:
            await self.store.set_transaction_status(tx_id, status)
        except Exception as e:
            logger.warning(f"{self.chain}: marking {mask_tx_hash(tx_id)} {status} failed: {e}")

    async def _load_journal_pending(self) -> None:
        """Pick up pending sweeps journaled by this or an earlier process."""
        try:
            entries = await self.store.list_pending_sweeps(self.chain)
        except Exception as e:
            logger.warning(f"{self.chain}: cannot load pending sweeps: {e}")
            return

        policies = {p.asset.symbol: p for p in self.policies}
        for entry in entries:
            policy = policies.get(entry.currency)
            if policy is None or not entry.tx_hash or not entry.from_address:
                continue
            key = (entry.from_address, entry.currency)
            if key in self._pending:
                continue
            wallet = WalletEntry(
                user_id=entry.user_id,
                address=entry.from_address,
                blockchain=self.chain,
                network=self.adapter.network,
            )
            self._pending[key] = _PendingSweep(wallet, policy, entry.amount, entry.tx_hash)

    async def _resolve_pending(self) -> list[SweepResult]:
        """Re-check sweeps that were not settled when first submitted."""
        await self._load_journal_pending()

        results = []
        for key, pending in list(self._pending.items()):
            symbol = pending.policy.asset.symbol
            try:
                receipt = await self.adapter.wait_for_confirmation(
                    pending.tx_id, self.adapter.confirmation_poll_interval
                )
            except ConfirmationTimeout:
                continue
            except CustodyError as e:
                logger.warning(f"{self.chain}: pending sweep check failed: {e}")
                continue

            if not receipt.success:
                del self._pending[key]
                await self._mark(pending.tx_id, TRANSACTION_STATUS_FAILED)
                logger.error(
                    f"{self.chain}: pending sweep {mask_tx_hash(pending.tx_id)} failed on chain"
                )
                results.append(SweepResult(
                    pending.wallet.address, symbol, SweepStatus.FAILED,
                    pending.amount, pending.tx_id, reason=receipt.error,
                ))
                continue

            try:
                await self._complete(pending.wallet, pending.policy, pending.amount, pending.tx_id)
            except Exception as e:
                logger.exception(
                    f"{self.chain}: crediting sweep {mask_tx_hash(pending.tx_id)} failed: {e}"
                )
                continue
            del self._pending[key]
            results.append(SweepResult(
                pending.wallet.address, symbol, SweepStatus.SWEPT, pending.amount, pending.tx_id
            ))
        return results
