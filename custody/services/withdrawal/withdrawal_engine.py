"""
Withdrawal engine.

Blockchain-execution half of a withdrawal: validates the request against
the user's ledger balance and the pool's minimum reserve, pays it out of
the main pool and debits the ledger only after the transfer was accepted.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from loguru import logger

from custody.config.constants import TRANSACTION_TYPE_WITHDRAW
from custody.services.chains.assets import Asset
from custody.services.chains.base import AccountLocks, ChainAdapter
from custody.services.ledger.records import TransactionEntry
from custody.services.ledger.store import LedgerStore
from custody.services.withdrawal.fee_policy import FeePolicy
from custody.utils.exceptions import (
    ChainUnavailable,
    InsufficientBalance,
    InsufficientPoolLiquidity,
    InvalidAddress,
    InvalidAmount,
    SecurityError,
    TransferRejected,
    UnsupportedCurrency,
    WithdrawalFailed,
    WithdrawalRejected,
)
from custody.utils.security import mask_address, mask_tx_hash
from custody.utils.units import to_decimal, truncate


@dataclass(frozen=True)
class WithdrawalCheck:
    """Result of a pre-flight withdrawal check."""

    ok: bool
    reason: str | None = None
    message: str | None = None


class WithdrawalEngine:
    """
    Pays withdrawals out of the per-chain main pools.

    Withdrawals of one user, and withdrawals paid from one pool, are
    serialized so that balance and reserve checks cannot interleave with
    another payout.
    """

    def __init__(
        self,
        adapters: dict[str, ChainAdapter],
        store: LedgerStore,
        fee_policy: FeePolicy | None = None,
    ) -> None:
        """
        Initialize withdrawal engine.

        Args:
            adapters: Chain adapters by chain name
            store: Ledger store
            fee_policy: Fees, reserves and routing
        """
        self.adapters = adapters
        self.store = store
        self.fee_policy = fee_policy or FeePolicy()
        self._pool_locks = AccountLocks()
        self._user_locks = AccountLocks()

    def get_fee_schedule(self) -> dict[str, Decimal]:
        return self.fee_policy.fee_schedule()

    def get_minimum_reserve(self) -> dict[str, Decimal]:
        return self.fee_policy.reserve_schedule()

    async def can_withdraw(
        self,
        amount: Decimal | int | str,
        currency: str,
        network: str | None = None,
    ) -> WithdrawalCheck:
        """
        Check whether the pool can pay a withdrawal.

        Args:
            amount: Amount the recipient receives
            currency: Currency symbol
            network: Explicit chain (optional)

        Returns:
            WithdrawalCheck with a structured reason when not ok
        """
        try:
            value = self._validate_amount(amount)
            adapter, asset = self._resolve(currency, network)
            await self._check_pool(adapter, asset, value)
        except WithdrawalRejected as e:
            return WithdrawalCheck(ok=False, reason=e.reason, message=e.message)
        except ChainUnavailable as e:
            return WithdrawalCheck(ok=False, reason="chain_unavailable", message=str(e))
        return WithdrawalCheck(ok=True)

    async def withdraw(
        self,
        user_id: int,
        to_address: str,
        amount: Decimal | int | str,
        currency: str,
        network: str | None = None,
    ) -> str:
        """
        Pay a withdrawal from the main pool.

        Args:
            user_id: User ID
            to_address: Destination address
            amount: Amount the recipient receives
            currency: Currency symbol
            network: Explicit chain (optional)

        Returns:
            Transaction identifier

        Raises:
            InvalidAmount: If amount is not positive
            InvalidAddress: If destination is malformed
            UnsupportedCurrency: If currency cannot be withdrawn there
            InsufficientBalance: If the user's balance does not cover it
            InsufficientPoolLiquidity: If the pool would drop below reserve
            WithdrawalFailed: If the chain submission failed (nothing debited)
            ChainUnavailable: If the pool balance cannot be read
        """
        value = self._validate_amount(amount)
        adapter, asset = self._resolve(currency, network)

        if not adapter.is_valid_address(to_address):
            raise InvalidAddress(f"Invalid {adapter.chain} address: {to_address}")

        symbol = asset.symbol
        async with self._user_locks.hold(f"{user_id}:{symbol}"):
            balance = await self.store.get_balance(user_id, symbol)
            if balance < value:
                raise InsufficientBalance(
                    f"Balance {balance} {symbol} does not cover {value} {symbol}"
                )

            async with self._pool_locks.hold(adapter.chain):
                await self._check_pool(adapter, asset, value)

                try:
                    tx_id = await adapter.submit_transfer(
                        adapter.pool_signer, to_address, value, asset
                    )
                except (TransferRejected, ChainUnavailable, SecurityError) as e:
                    logger.error(
                        f"Withdrawal of {value} {symbol} for user {user_id} "
                        f"to {mask_address(to_address)} failed: {e}"
                    )
                    raise WithdrawalFailed(str(e)) from e

            entry = TransactionEntry(
                type=TRANSACTION_TYPE_WITHDRAW,
                user_id=user_id,
                currency=symbol,
                network=adapter.chain,
                amount=-value,
                fee=self.fee_policy.fee(symbol),
                from_address=adapter.pool_address,
                to_address=to_address,
                tx_hash=tx_id,
            )
            try:
                await self.store.record_withdrawal(entry, debit=value)
            except InsufficientBalance:
                # Balance changed under another process after submission
                logger.critical(
                    f"Withdrawal {tx_id} for user {user_id} was sent but the "
                    f"balance no longer covers {value} {symbol}; "
                    "manual reconciliation required"
                )
                await self.store.record_transaction(entry)

        logger.success(
            f"Withdrawal sent: user={user_id}, {value} {symbol} "
            f"to {mask_address(to_address)}, tx={mask_tx_hash(tx_id)}"
        )
        return tx_id

    def _validate_amount(self, amount: Decimal | int | str) -> Decimal:
        try:
            value = to_decimal(amount)
        except (TypeError, ValueError, InvalidOperation) as e:
            raise InvalidAmount(f"Invalid amount: {amount}") from e
        if not value.is_finite() or value <= 0:
            raise InvalidAmount(f"Amount must be positive, got {amount}")
        return value

    def _resolve(self, currency: str, network: str | None) -> tuple[ChainAdapter, Asset]:
        chain, symbol = self.fee_policy.route(currency, network)
        adapter = self.adapters.get(chain)
        if adapter is None:
            raise UnsupportedCurrency(f"Chain {chain} is not enabled")
        asset = adapter.get_asset(symbol)
        if asset is None:
            raise UnsupportedCurrency(f"{symbol} is not supported on {chain}")
        return adapter, asset

    async def _check_pool(self, adapter: ChainAdapter, asset: Asset, amount: Decimal) -> None:
        """
        Ensure the pool keeps its minimum reserve after paying amount + fee.

        Raises:
            InvalidAmount: If amount has more decimals than the asset
            InsufficientPoolLiquidity: If the reserve would be breached
        """
        if truncate(amount, asset.decimals) != amount:
            raise InvalidAmount(
                f"{asset.symbol} supports at most {asset.decimals} decimals"
            )

        pool = adapter.pool_address
        if not pool:
            raise InsufficientPoolLiquidity(f"{adapter.chain} main pool is not configured")

        total_required = amount + self.fee_policy.fee(asset.symbol)
        reserve = self.fee_policy.minimum_reserve(asset.symbol)
        pool_balance = await adapter.get_balance(pool, asset)

        if pool_balance - total_required < reserve:
            logger.warning(
                f"Pool liquidity check failed: {pool_balance} {asset.symbol} in pool, "
                f"{total_required} required, reserve {reserve}"
            )
            raise InsufficientPoolLiquidity(
                f"Pool cannot pay {amount} {asset.symbol} "
                f"(fee {total_required - amount}) and keep its {reserve} reserve"
            )
