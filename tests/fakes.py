"""
In-memory collaborators for custody tests.

- InMemoryLedgerStore: LedgerStore with the tx_hash uniqueness of the real table
- FakeOracle: convert() over a fixed USD price table
- FakeChainAdapter: scripted balances, transfers and receipts
"""

import asyncio
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from custody.services.chains.assets import SOL, Asset, usdc_spl
from custody.services.chains.base import ChainAdapter, InboundTransfer, TransferReceipt
from custody.services.ledger.records import (
    DepositRecord,
    NewDeposit,
    TransactionEntry,
    WalletEntry,
)
from custody.utils.exceptions import (
    ChainUnavailable,
    ConfirmationTimeout,
    DuplicateTxHash,
    InsufficientBalance,
    OracleUnavailable,
    TransferRejected,
)

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


class InMemoryLedgerStore:
    """LedgerStore keeping everything in dicts."""

    def __init__(self) -> None:
        self.deposits: dict[str, DepositRecord] = {}
        self.balances: dict[tuple[int, str], Decimal] = {}
        self.wallets: list[WalletEntry] = []
        self.transactions: list[TransactionEntry] = []
        self.sync_heights: dict[str, int] = {}
        self.sync_errors: dict[str, list[str]] = {}
        self.create_calls = 0

    def add_wallet(self, user_id: int, address: str, blockchain: str = "solana",
                   network: str = "testnet", encrypted_private_key: str | None = None) -> WalletEntry:
        wallet = WalletEntry(user_id, address, blockchain, network, encrypted_private_key)
        self.wallets.append(wallet)
        return wallet

    async def find_deposit(self, tx_hash: str) -> DepositRecord | None:
        return self.deposits.get(tx_hash)

    async def create_deposit_and_credit(self, deposit: NewDeposit) -> DepositRecord:
        self.create_calls += 1
        # Yield like a real database round-trip so concurrent callers interleave
        await asyncio.sleep(0)
        if deposit.tx_hash in self.deposits:
            raise DuplicateTxHash(deposit.tx_hash)

        record = DepositRecord(
            order_id=deposit.order_id,
            tx_hash=deposit.tx_hash,
            user_id=deposit.user_id,
            to_address=deposit.to_address,
            currency=deposit.currency,
            network=deposit.network,
            amount=deposit.amount,
            status=deposit.status,
            type=deposit.type,
            confirmations=deposit.confirmations,
            from_address=deposit.from_address,
            rate=deposit.rate,
            real_arrival=deposit.real_arrival,
            block_number=deposit.block_number,
            created_at=datetime.now(UTC),
            confirmed_at=deposit.confirmed_at,
        )
        self.deposits[deposit.tx_hash] = record
        key = (deposit.user_id, deposit.currency)
        self.balances[key] = self.balances.get(key, Decimal("0")) + deposit.amount
        return record

    async def upsert_balance(self, user_id: int, currency: str, delta: Decimal) -> None:
        key = (user_id, currency)
        self.balances[key] = self.balances.get(key, Decimal("0")) + delta

    async def get_balance(self, user_id: int, currency: str) -> Decimal:
        return self.balances.get((user_id, currency), Decimal("0"))

    async def list_wallets(self, blockchain: str, network: str | None = None) -> list[WalletEntry]:
        return [
            w for w in self.wallets
            if w.blockchain == blockchain and (network is None or w.network == network)
        ]

    async def record_withdrawal(self, entry: TransactionEntry, debit: Decimal) -> None:
        key = (entry.user_id, entry.currency)
        balance = self.balances.get(key, Decimal("0"))
        if balance < debit:
            raise InsufficientBalance(f"{balance} < {debit}")
        self.balances[key] = balance - debit
        self.transactions.append(entry)

    async def record_transaction(self, entry: TransactionEntry) -> None:
        self.transactions.append(entry)

    async def list_transactions(self, user_id: int, type: str | None = None) -> list[TransactionEntry]:
        return [
            t for t in self.transactions
            if t.user_id == user_id and (type is None or t.type == type)
        ]

    async def list_pending_sweeps(self, network: str) -> list[TransactionEntry]:
        return [
            t for t in self.transactions
            if t.network == network and t.type == "sweep" and t.status == "pending"
        ]

    async def set_transaction_status(self, tx_hash: str, status: str) -> None:
        self.transactions = [
            replace(t, status=status) if t.tx_hash == tx_hash else t
            for t in self.transactions
        ]

    async def deposit_stats(self, network: str, currency: str | None = None) -> dict[str, Any]:
        rows = [
            d for d in self.deposits.values()
            if d.network == network and (currency is None or d.currency == currency)
        ]
        return {
            "total_deposits": len(rows),
            "total_amount": sum((d.amount for d in rows), Decimal("0")),
            "pending_deposits": sum(1 for d in rows if d.status == "pending"),
            "confirmed_deposits": sum(1 for d in rows if d.status == "confirmed"),
        }

    async def load_sync_height(self, chain: str) -> int | None:
        return self.sync_heights.get(chain)

    async def save_sync_height(self, chain: str, height: int) -> None:
        self.sync_heights[chain] = height

    async def record_sync_error(self, chain: str, error: str) -> None:
        self.sync_errors.setdefault(chain, []).append(error)


class FakeOracle:
    """Oracle over a fixed USD price table."""

    def __init__(self, prices: dict[str, Decimal] | None = None, available: bool = True) -> None:
        self.prices = prices or {"SOL": Decimal("150"), "ETH": Decimal("3000"), "TRX": Decimal("0.1")}
        self.available = available
        self.calls = 0

    async def convert(self, amount: Decimal, from_symbol: str, to_symbol: str) -> Decimal:
        self.calls += 1
        if not self.available:
            raise OracleUnavailable("oracle down")
        usd = {"USD": Decimal("1"), "USDT": Decimal("1"), "USDC": Decimal("1"), **self.prices}
        return Decimal(amount) * usd[from_symbol.upper()] / usd[to_symbol.upper()]

    async def close(self) -> None:
        return None


class FakeChainAdapter(ChainAdapter):
    """
    Scripted adapter.

    Addresses are strings starting with "addr"; a signer is its own
    address. Every RPC-like call is appended to `calls` so tests can
    assert ordering.
    """

    def __init__(
        self,
        chain: str = "solana",
        network: str = "testnet",
        native: Asset = SOL,
        tokens: list[Asset] | None = None,
        supports_range_queries: bool = True,
        pool: str | None = "addr_pool",
    ) -> None:
        super().__init__(network, native, confirmation_poll_interval=0.01)
        self.chain = chain
        self.supports_range_queries = supports_range_queries
        self._tokens = tokens if tokens is not None else [usdc_spl(USDC_MINT)]
        self.height = 100
        self.balances: dict[tuple[str, str], Decimal] = {}
        self.transfers: dict[str, list[InboundTransfer]] = {}
        self.failing_addresses: set[str] = set()
        self.reject_submissions = False
        self.unconfirmed: set[str] = set()
        self.failed_txs: set[str] = set()
        self.calls: list[tuple] = []
        self.submitted: list[tuple[str, str, Decimal, str]] = []
        self.list_delay = 0.0
        if pool:
            self.set_pool_signer(pool)

    @property
    def assets(self) -> list[Asset]:
        return [self.native_asset, *self._tokens]

    def is_valid_address(self, address: str) -> bool:
        return isinstance(address, str) and address.startswith("addr")

    def load_signer(self, secret: str) -> str:
        return secret

    def signer_address(self, signer: str) -> str:
        return signer

    def set_balance(self, address: str, symbol: str, amount: str | Decimal) -> None:
        self.balances[(address, symbol)] = Decimal(amount)

    def add_transfer(self, address: str, tx_id: str, amount: str | Decimal,
                     asset: Asset | None = None, block_height: int | None = None,
                     confirmed: bool = True, to_address: str | None = None,
                     from_address: str = "addr_sender") -> InboundTransfer:
        transfer = InboundTransfer(
            tx_id=tx_id,
            from_address=from_address,
            to_address=to_address or address,
            amount=Decimal(amount),
            asset=asset or self.native_asset,
            block_height=block_height if block_height is not None else self.height,
            confirmed=confirmed,
        )
        self.transfers.setdefault(address, []).append(transfer)
        return transfer

    async def get_balance(self, address: str, asset: Asset | None = None) -> Decimal:
        asset = asset or self.native_asset
        self.calls.append(("balance", address, asset.symbol))
        if address in self.failing_addresses:
            raise ChainUnavailable(self.chain, "balance read failed")
        return self.balances.get((address, asset.symbol), Decimal("0"))

    async def get_block_height(self) -> int:
        self.calls.append(("height",))
        return self.height

    async def list_recent_inbound_transfers(self, address, limit, from_height=None,
                                            to_height=None, assets=None) -> list[InboundTransfer]:
        self.calls.append(("list", address, from_height, to_height))
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        if address in self.failing_addresses:
            raise ChainUnavailable(self.chain, "rpc down")
        symbols = {a.symbol for a in assets} if assets is not None else None
        result = []
        # Range reads page through the whole window like the real adapters
        history = self.transfers.get(address, [])
        if from_height is None:
            history = history[-limit:]
        for transfer in history:
            if symbols is not None and transfer.asset.symbol not in symbols:
                continue
            height = transfer.block_height
            if from_height is not None and height is not None and height < from_height:
                continue
            if to_height is not None and height is not None and height > to_height:
                continue
            result.append(transfer)
        return result

    async def _submit_transfer(self, signer: Any, to: str, amount: Decimal, asset: Asset) -> str:
        sender = self.signer_address(signer)
        self.calls.append(("submit", sender, to, amount, asset.symbol))
        if self.reject_submissions:
            raise TransferRejected(self.chain, "insufficient gas")
        tx_id = f"tx_{len(self.submitted) + 1:04d}_{asset.symbol.lower()}"
        self.submitted.append((sender, to, amount, asset.symbol))

        from_key = (sender, asset.symbol)
        self.balances[from_key] = self.balances.get(from_key, Decimal("0")) - amount
        to_key = (to, asset.symbol)
        self.balances[to_key] = self.balances.get(to_key, Decimal("0")) + amount
        return tx_id

    async def wait_for_confirmation(self, tx_id: str, timeout: float) -> TransferReceipt:
        self.calls.append(("wait", tx_id))
        if tx_id in self.unconfirmed:
            raise ConfirmationTimeout(tx_id, timeout)
        if tx_id in self.failed_txs:
            return TransferReceipt(tx_id, success=False, error="reverted")
        return TransferReceipt(tx_id, success=True, block_height=self.height)

