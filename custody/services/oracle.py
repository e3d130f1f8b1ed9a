"""
Price oracle.

USD prices from the CoinGecko simple/price endpoint with a short-lived
in-memory cache. Stablecoins and USD are priced 1:1 without a request.
"""

import json
import time
from decimal import Decimal

import aiohttp
from loguru import logger

from custody.config.constants import USD_STABLE_SYMBOLS
from custody.utils.exceptions import OracleUnavailable
from custody.utils.units import to_decimal

# CoinGecko coin ids per symbol
COINGECKO_IDS: dict[str, str] = {
    "TRX": "tron",
    "ETH": "ethereum",
    "SOL": "solana",
    "USDT": "tether",
    "USDC": "usd-coin",
}


class PriceOracle:
    """
    Converts amounts between supported symbols through their USD price.

    Supported symbols: TRX, ETH, SOL, USD, USDT, USDC (case-insensitive).
    """

    def __init__(
        self,
        url: str = "https://api.coingecko.com/api/v3/simple/price",
        cache_ttl: float = 30.0,
        timeout: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """
        Initialize oracle.

        Args:
            url: simple/price endpoint
            cache_ttl: Seconds a fetched price stays valid
            timeout: Request timeout in seconds
            session: Preconfigured session (tests)
        """
        self.url = url
        self.cache_ttl = cache_ttl
        self.timeout = timeout
        self._session = session
        self._cache: dict[str, tuple[Decimal, float]] = {}

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def convert(
        self, amount: Decimal | int | str, from_symbol: str, to_symbol: str
    ) -> Decimal:
        """
        Convert amount from one symbol to another.

        Args:
            amount: Amount in from_symbol
            from_symbol: Source symbol
            to_symbol: Target symbol

        Returns:
            Converted amount

        Raises:
            OracleUnavailable: If a symbol is unsupported or a price cannot be fetched
        """
        value = to_decimal(amount)
        source = from_symbol.upper()
        target = to_symbol.upper()
        if source == target:
            return value

        source_price = await self.get_usd_price(source)
        target_price = await self.get_usd_price(target)
        return value * source_price / target_price

    async def get_usd_price(self, symbol: str) -> Decimal:
        """
        Get USD price of a symbol.

        Args:
            symbol: Currency symbol

        Returns:
            Price in USD

        Raises:
            OracleUnavailable: If the symbol is unsupported or the request fails
        """
        symbol = symbol.upper()
        if symbol in USD_STABLE_SYMBOLS:
            return Decimal("1")

        coin_id = COINGECKO_IDS.get(symbol)
        if coin_id is None:
            raise OracleUnavailable(f"Unsupported symbol: {symbol}")

        cached = self._cache.get(symbol)
        if cached is not None and time.monotonic() - cached[1] < self.cache_ttl:
            return cached[0]

        price = await self._fetch_price(coin_id)
        self._cache[symbol] = (price, time.monotonic())
        return price

    async def _fetch_price(self, coin_id: str) -> Decimal:
        params = {"ids": coin_id, "vs_currencies": "usd"}
        try:
            async with self._get_session().get(self.url, params=params) as response:
                if response.status != 200:
                    raise OracleUnavailable(
                        f"Price request for {coin_id} returned HTTP {response.status}"
                    )
                text = await response.text()
        except (aiohttp.ClientError, OSError, TimeoutError) as e:
            raise OracleUnavailable(f"Price request for {coin_id} failed: {e}") from e

        try:
            data = json.loads(text, parse_float=Decimal, parse_int=Decimal)
            price = data[coin_id]["usd"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise OracleUnavailable(f"Unexpected price response for {coin_id}") from e

        if not isinstance(price, Decimal) or price <= 0:
            raise OracleUnavailable(f"Invalid price for {coin_id}: {price}")

        logger.debug(f"Price {coin_id}/usd = {price}")
        return price

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
