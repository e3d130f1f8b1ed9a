"""
Chain adapter interface.

Uniform read/write capability set over Solana, Ethereum and Tron:
balance, recent inbound transfers, transfer submission and
confirmation polling.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from loguru import logger

from custody.services.chains.assets import Asset
from custody.utils.exceptions import (
    ChainUnavailable,
    ConfirmationTimeout,
    InvalidAddress,
    InvalidAmount,
    SecurityError,
)
from custody.utils.security import mask_address
from custody.utils.units import to_decimal


@dataclass(frozen=True)
class InboundTransfer:
    """Transfer observed on chain towards a monitored address."""

    tx_id: str
    from_address: str | None
    to_address: str
    amount: Decimal
    asset: Asset
    block_height: int | None
    confirmed: bool = True


@dataclass(frozen=True)
class TransferReceipt:
    """Outcome of a confirmed transaction."""

    tx_id: str
    success: bool
    block_height: int | None = None
    error: str | None = None


class AccountLocks:
    """
    Per-account submission locks.

    Transfers signed by the same account are submitted one at a time so
    nonces and recent blockhashes never race.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, account: str) -> asyncio.Lock:
        """Get (or create) the lock of an account."""
        lock = self._locks.get(account)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account] = lock
        return lock

    @asynccontextmanager
    async def hold(self, account: str):
        """Hold the lock of an account for the duration of the block."""
        lock = self.get(account)
        async with lock:
            yield


class ChainAdapter(ABC):
    """
    Base class of all chain adapters.

    Subclasses implement the RPC specifics; validation, amount coercion
    and per-sender serialization of submissions live here.
    """

    chain: str = ""
    supports_range_queries: bool = False

    def __init__(
        self,
        network: str,
        native_asset: Asset,
        confirmation_poll_interval: float = 3.0,
    ) -> None:
        """
        Initialize adapter.

        Args:
            network: Network name (mainnet, testnet, sepolia, shasta...)
            native_asset: Gas currency of the chain
            confirmation_poll_interval: Seconds between confirmation polls
        """
        self.network = network
        self.native_asset = native_asset
        self.confirmation_poll_interval = confirmation_poll_interval
        self.locks = AccountLocks()
        self._pool_signer: Any = None

    # ------------------------------------------------------------------
    # Assets and addresses
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def assets(self) -> list[Asset]:
        """Assets supported on this chain, native first."""

    def get_asset(self, symbol: str) -> Asset | None:
        """Find supported asset by symbol (case-insensitive)."""
        symbol = symbol.upper()
        for asset in self.assets:
            if asset.symbol == symbol:
                return asset
        return None

    @abstractmethod
    def is_valid_address(self, address: str) -> bool:
        """Validate address format without any network call."""

    def normalize_address(self, address: str) -> str:
        """Canonical form used when comparing addresses."""
        return address

    def same_address(self, a: str | None, b: str | None) -> bool:
        """Compare two addresses in canonical form."""
        if not a or not b:
            return False
        return self.normalize_address(a) == self.normalize_address(b)

    # ------------------------------------------------------------------
    # Signers
    # ------------------------------------------------------------------

    @abstractmethod
    def load_signer(self, secret: str) -> Any:
        """Build a signer from a decrypted private key."""

    @abstractmethod
    def signer_address(self, signer: Any) -> str:
        """Address controlled by a signer."""

    def set_pool_signer(self, secret: str | None) -> None:
        """
        Configure the main pool signer.

        Args:
            secret: Pool private key, None to leave the pool read-only
        """
        if not secret:
            self._pool_signer = None
            logger.warning(f"{self.chain}: main pool key not configured")
            return
        self._pool_signer = self.load_signer(secret)
        logger.info(
            f"{self.chain}: main pool {mask_address(self.signer_address(self._pool_signer))}"
        )

    @property
    def pool_signer(self) -> Any:
        """Main pool signer.

        Raises:
            SecurityError: If no pool key is configured
        """
        if self._pool_signer is None:
            raise SecurityError(f"{self.chain}: main pool key not configured")
        return self._pool_signer

    @property
    def pool_address(self) -> str | None:
        """Main pool address, None when no pool key is configured."""
        if self._pool_signer is None:
            return None
        return self.signer_address(self._pool_signer)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_balance(self, address: str, asset: Asset | None = None) -> Decimal:
        """
        Get balance of an address.

        Args:
            address: Address to query
            asset: Asset to query, native asset when None

        Returns:
            Balance in human units

        Raises:
            ChainUnavailable: On RPC failure
        """

    @abstractmethod
    async def get_block_height(self) -> int:
        """Current confirmed block number (slot on Solana)."""

    @abstractmethod
    async def list_recent_inbound_transfers(
        self,
        address: str,
        limit: int,
        from_height: int | None = None,
        to_height: int | None = None,
        assets: list[Asset] | None = None,
    ) -> list[InboundTransfer]:
        """
        List confirmed transfers received by an address.

        Args:
            address: Monitored address
            limit: Maximum number of chain transactions to inspect
            from_height: First block/slot to include (range-capable chains)
            to_height: Last block/slot to include (range-capable chains)
            assets: Restrict to these assets, all supported when None

        Returns:
            Inbound transfers with positive amounts

        Raises:
            ChainUnavailable: On RPC failure
        """

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def submit_transfer(
        self,
        signer: Any,
        to: str,
        amount: Decimal | int | str,
        asset: Asset | None = None,
    ) -> str:
        """
        Sign and submit a transfer.

        Submissions from the same signing account are serialized.

        Args:
            signer: Signer returned by load_signer
            to: Destination address
            amount: Amount in human units
            asset: Asset to send, native asset when None

        Returns:
            Transaction identifier

        Raises:
            InvalidAddress: If destination is malformed (no RPC call made)
            InvalidAmount: If amount is not positive
            TransferRejected: If the node rejects the transaction
            ChainUnavailable: On RPC failure
        """
        asset = asset or self.native_asset
        value = to_decimal(amount)

        if not self.is_valid_address(to):
            raise InvalidAddress(f"Invalid {self.chain} address: {to}")
        if value <= 0:
            raise InvalidAmount(f"Amount must be positive, got {value}")

        sender = self.signer_address(signer)
        async with self.locks.hold(sender):
            logger.info(
                f"{self.chain}: sending {value} {asset.symbol} "
                f"{mask_address(sender)} -> {mask_address(to)}"
            )
            return await self._submit_transfer(signer, to, value, asset)

    @abstractmethod
    async def _submit_transfer(
        self, signer: Any, to: str, amount: Decimal, asset: Asset
    ) -> str:
        """Chain-specific signing and broadcast."""

    @abstractmethod
    async def wait_for_confirmation(
        self, tx_id: str, timeout: float
    ) -> TransferReceipt:
        """
        Wait until a transaction is confirmed.

        Args:
            tx_id: Transaction identifier
            timeout: Maximum seconds to wait

        Returns:
            Receipt; success is False if the transaction was executed but failed

        Raises:
            ConfirmationTimeout: If not confirmed in time
        """

    async def _poll_until_confirmed(
        self,
        tx_id: str,
        timeout: float,
        fetch: Callable[[str], Awaitable[TransferReceipt | None]],
    ) -> TransferReceipt:
        """
        Poll fetch until it returns a receipt or the timeout elapses.

        Args:
            tx_id: Transaction identifier
            timeout: Maximum seconds to wait
            fetch: Returns a receipt once the transaction is confirmed

        Returns:
            Receipt

        Raises:
            ConfirmationTimeout: If not confirmed in time
        """
        deadline = time.monotonic() + timeout
        while True:
            try:
                receipt = await fetch(tx_id)
            except ChainUnavailable as e:
                logger.warning(f"{self.chain}: confirmation poll failed: {e}")
                receipt = None
            if receipt is not None:
                return receipt

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ConfirmationTimeout(tx_id, timeout)
            await asyncio.sleep(min(self.confirmation_poll_interval, remaining))

    async def close(self) -> None:
        """Release network resources."""
        return None
