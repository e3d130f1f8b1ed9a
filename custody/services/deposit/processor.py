"""
Deposit processor.

Turns a detected inbound transfer into exactly one deposit record and
one balance credit, however many times the transfer is presented.
"""

import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from loguru import logger

from custody.config.constants import (
    DEPOSIT_STATUS_CONFIRMED,
    DEPOSIT_TYPE_CRYPTO,
    MONEY_DECIMALS,
    RATE_DECIMALS,
)
from custody.services.deposit.processed_tx_cache import ProcessedTxCache
from custody.services.ledger.records import DepositRecord, NewDeposit
from custody.services.ledger.store import LedgerStore
from custody.services.oracle import PriceOracle
from custody.utils.exceptions import DuplicateTxHash, OracleUnavailable
from custody.utils.security import mask_address, mask_tx_hash
from custody.utils.units import truncate


class ProcessStatus(str, Enum):
    """Result of presenting a transfer to the processor."""

    CREDITED = "credited"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass(frozen=True)
class DetectedDeposit:
    """Inbound transfer to a monitored address, attributed to a user."""

    tx_id: str
    user_id: int
    to_address: str
    amount: Decimal
    currency: str
    network: str
    from_address: str | None = None
    block_height: int | None = None
    confirmed: bool = True


@dataclass(frozen=True)
class DepositOutcome:
    """Processing outcome with the stored record when credited."""

    status: ProcessStatus
    tx_id: str
    record: DepositRecord | None = None

    @property
    def credited(self) -> bool:
        return self.status is ProcessStatus.CREDITED


def generate_order_id() -> str:
    """Human-traceable deposit order id: DEP_<epoch-ms>_<8 hex>."""
    return f"DEP_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8].upper()}"


class DepositProcessor:
    """
    Deduplicating deposit processor.

    Steps per transfer:
    1. Seen-set hit -> duplicate
    2. Stored deposit with the same tx hash -> remember, duplicate
    3. USD rate lookup (null on oracle failure)
    4. Deposit insert + balance credit in one transaction;
       unique index violation -> duplicate
    5. Remember the tx id only after commit
    """

    def __init__(
        self,
        store: LedgerStore,
        oracle: PriceOracle,
        seen: ProcessedTxCache,
    ) -> None:
        """
        Initialize processor.

        Args:
            store: Ledger store
            oracle: Price oracle (convert capability)
            seen: Processed transaction cache shared by all pollers
        """
        self.store = store
        self.oracle = oracle
        self.seen = seen

    async def process(self, deposit: DetectedDeposit) -> DepositOutcome:
        """
        Process a detected deposit.

        Args:
            deposit: Detected transfer

        Returns:
            Outcome (credited, duplicate or ignored)
        """
        if deposit.amount <= 0 or not deposit.confirmed:
            return DepositOutcome(ProcessStatus.IGNORED, deposit.tx_id)

        if deposit.tx_id in self.seen:
            return DepositOutcome(ProcessStatus.DUPLICATE, deposit.tx_id)

        if await self.store.find_deposit(deposit.tx_id) is not None:
            self.seen.add(deposit.tx_id)
            return DepositOutcome(ProcessStatus.DUPLICATE, deposit.tx_id)

        rate, real_arrival = await self._usd_value(deposit)

        new_deposit = NewDeposit(
            order_id=generate_order_id(),
            tx_hash=deposit.tx_id,
            user_id=deposit.user_id,
            to_address=deposit.to_address,
            currency=deposit.currency,
            network=deposit.network,
            amount=deposit.amount,
            status=DEPOSIT_STATUS_CONFIRMED,
            type=DEPOSIT_TYPE_CRYPTO,
            confirmations=1,
            from_address=deposit.from_address,
            rate=rate,
            real_arrival=real_arrival,
            block_number=deposit.block_height,
            confirmed_at=datetime.now(UTC),
        )

        try:
            record = await self.store.create_deposit_and_credit(new_deposit)
        except DuplicateTxHash:
            logger.info(
                f"Deposit {mask_tx_hash(deposit.tx_id)} recorded concurrently, skipping"
            )
            self.seen.add(deposit.tx_id)
            return DepositOutcome(ProcessStatus.DUPLICATE, deposit.tx_id)

        self.seen.add(deposit.tx_id)

        logger.success(
            f"Deposit credited: {deposit.amount} {deposit.currency} "
            f"({deposit.network}) for user {deposit.user_id} "
            f"to {mask_address(deposit.to_address)}, "
            f"order={record.order_id}, tx={mask_tx_hash(deposit.tx_id)}"
        )
        return DepositOutcome(ProcessStatus.CREDITED, deposit.tx_id, record)

    async def _usd_value(
        self, deposit: DetectedDeposit
    ) -> tuple[Decimal | None, Decimal | None]:
        """Unit USD rate and USD value; both None when the oracle fails."""
        try:
            rate = await self.oracle.convert(Decimal("1"), deposit.currency, "USD")
        except OracleUnavailable as e:
            logger.warning(
                f"Price unavailable for {deposit.currency}, recording "
                f"{mask_tx_hash(deposit.tx_id)} without USD value: {e}"
            )
            return None, None
        # Stored rate and value match the column scales exactly
        rate = truncate(rate, RATE_DECIMALS)
        return rate, truncate(deposit.amount * rate, MONEY_DECIMALS)
