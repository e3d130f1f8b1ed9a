"""
Withdrawal fee policy.

Fixed per-currency fees, pool minimum reserves and currency-to-chain
routing.
"""

from decimal import Decimal

from custody.config.constants import (
    CURRENCY_DEFAULT_CHAIN,
    MINIMUM_POOL_RESERVES,
    SUPPORTED_CHAINS,
    WITHDRAWAL_FEES,
)
from custody.utils.exceptions import UnsupportedCurrency


class FeePolicy:
    """Fee schedule, minimum reserves and routing of withdrawable currencies."""

    def __init__(
        self,
        fees: dict[str, Decimal] | None = None,
        reserves: dict[str, Decimal] | None = None,
        default_chains: dict[str, str] | None = None,
    ) -> None:
        self._fees = dict(fees if fees is not None else WITHDRAWAL_FEES)
        self._reserves = dict(reserves if reserves is not None else MINIMUM_POOL_RESERVES)
        self._default_chains = dict(
            default_chains if default_chains is not None else CURRENCY_DEFAULT_CHAIN
        )

    def fee(self, currency: str) -> Decimal:
        """
        Fixed withdrawal fee, retained by the pool.

        Raises:
            UnsupportedCurrency: If no fee is defined for the currency
        """
        try:
            return self._fees[currency.upper()]
        except KeyError:
            raise UnsupportedCurrency(f"Currency {currency} is not withdrawable") from None

    def minimum_reserve(self, currency: str) -> Decimal:
        """Balance floor the pool keeps after a withdrawal."""
        return self._reserves.get(currency.upper(), Decimal("0"))

    def route(self, currency: str, network: str | None = None) -> tuple[str, str]:
        """
        Resolve the chain a withdrawal is paid on.

        Args:
            currency: Currency symbol (case-insensitive)
            network: Explicit chain, default chain of the currency when None

        Returns:
            Tuple of (chain, currency symbol)

        Raises:
            UnsupportedCurrency: If the currency or chain is unknown
        """
        symbol = currency.upper()
        if symbol not in self._fees:
            raise UnsupportedCurrency(f"Currency {currency} is not withdrawable")

        chain = network.lower() if network else self._default_chains.get(symbol)
        if chain not in SUPPORTED_CHAINS:
            raise UnsupportedCurrency(f"No chain to withdraw {symbol} on {network or 'default network'}")
        return chain, symbol

    def fee_schedule(self) -> dict[str, Decimal]:
        return dict(self._fees)

    def reserve_schedule(self) -> dict[str, Decimal]:
        return dict(self._reserves)
