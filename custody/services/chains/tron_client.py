"""
TronGrid HTTP client.

Minimal async client for the TronGrid full-node and v1 REST APIs,
plus address and ABI encoding helpers.
"""

import json
from typing import Any

import aiohttp
import base58
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from custody.config.constants import CHAIN_TRON
from custody.utils.exceptions import ChainUnavailable

TRON_ADDRESS_PREFIX = b"\x41"


def hex_to_base58(address: str) -> str:
    """
    Convert a 41-prefixed hex address to base58check.

    Already-base58 input is returned unchanged.
    """
    if address.startswith("T"):
        return address
    raw = address[2:] if address.startswith("0x") else address
    return base58.b58encode_check(bytes.fromhex(raw)).decode()


def base58_to_hex(address: str) -> str:
    """Convert a base58check address to 41-prefixed hex."""
    return base58.b58decode_check(address).hex()


def encode_address_param(address: str) -> str:
    """ABI-encode an address argument (20 bytes, left padded)."""
    return base58_to_hex(address)[2:].rjust(64, "0")


def encode_uint256_param(value: int) -> str:
    """ABI-encode a uint256 argument."""
    return format(value, "064x")


def decode_message(message: str | None) -> str:
    """Decode a hex-encoded node error message."""
    if not message:
        return ""
    try:
        return bytes.fromhex(message).decode("utf-8", errors="replace")
    except ValueError:
        return message


class TronGridClient:
    """
    Async TronGrid API client.

    Read requests are retried a few times on transport errors; writes are
    never retried here.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """
        Initialize client.

        Args:
            base_url: Full node URL (https://api.trongrid.io, https://api.shasta.trongrid.io)
            api_key: TronGrid API key sent as TRON-PRO-API-KEY
            timeout: Request timeout in seconds
            session: Preconfigured session (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["TRON-PRO-API-KEY"] = self.api_key
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(
                method, url, json=payload, params=params
            ) as response:
                text = await response.text()
                if response.status >= 400:
                    raise ChainUnavailable(
                        CHAIN_TRON, f"{path} returned HTTP {response.status}: {text[:200]}"
                    )
        except (aiohttp.ClientError, OSError, TimeoutError) as e:
            raise ChainUnavailable(CHAIN_TRON, f"{path}: {e}") from e

        try:
            return json.loads(text) if text else {}
        except json.JSONDecodeError as e:
            raise ChainUnavailable(CHAIN_TRON, f"{path}: invalid JSON response") from e

    @retry(
        retry=retry_if_exception_type(ChainUnavailable),
        stop=stop_after_attempt(3),
        wait=wait_fixed(1),
        reraise=True,
    )
    async def _read(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return await self._request(method, path, payload, params)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_now_block(self) -> dict[str, Any]:
        """Latest block."""
        return await self._read("POST", "/wallet/getnowblock", {})

    async def get_account(self, address: str) -> dict[str, Any]:
        """Account info; empty dict for unactivated accounts."""
        return await self._read(
            "POST", "/wallet/getaccount", {"address": address, "visible": True}
        )

    async def trigger_constant_contract(
        self, owner: str, contract: str, selector: str, parameter: str
    ) -> dict[str, Any]:
        """Read-only contract call."""
        return await self._read("POST", "/wallet/triggerconstantcontract", {
            "owner_address": owner,
            "contract_address": contract,
            "function_selector": selector,
            "parameter": parameter,
            "visible": True,
        })

    async def get_transactions(self, address: str, limit: int) -> list[dict[str, Any]]:
        """Confirmed transactions received by address (newest first)."""
        data = await self._read(
            "GET",
            f"/v1/accounts/{address}/transactions",
            params={
                "only_to": "true",
                "only_confirmed": "true",
                "limit": limit,
            },
        )
        return list(data.get("data") or [])

    async def get_trc20_transactions(
        self, address: str, contract: str, limit: int
    ) -> list[dict[str, Any]]:
        """Confirmed TRC-20 transfers received by address (newest first)."""
        data = await self._read(
            "GET",
            f"/v1/accounts/{address}/transactions/trc20",
            params={
                "only_to": "true",
                "only_confirmed": "true",
                "limit": limit,
                "contract_address": contract,
            },
        )
        return list(data.get("data") or [])

    async def get_transaction_info(self, tx_id: str) -> dict[str, Any]:
        """Execution info; empty dict until the transaction is in a block."""
        return await self._read(
            "POST", "/wallet/gettransactioninfobyid", {"value": tx_id}
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_transaction(
        self, owner: str, to: str, amount_sun: int
    ) -> dict[str, Any]:
        """Build an unsigned TRX transfer."""
        return await self._request("POST", "/wallet/createtransaction", {
            "owner_address": owner,
            "to_address": to,
            "amount": amount_sun,
            "visible": True,
        })

    async def trigger_smart_contract(
        self,
        owner: str,
        contract: str,
        selector: str,
        parameter: str,
        fee_limit: int,
    ) -> dict[str, Any]:
        """Build an unsigned contract call."""
        return await self._request("POST", "/wallet/triggersmartcontract", {
            "owner_address": owner,
            "contract_address": contract,
            "function_selector": selector,
            "parameter": parameter,
            "fee_limit": fee_limit,
            "call_value": 0,
            "visible": True,
        })

    async def broadcast_transaction(self, transaction: dict[str, Any]) -> dict[str, Any]:
        """Broadcast a signed transaction."""
        return await self._request("POST", "/wallet/broadcasttransaction", transaction)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
            logger.debug("TronGrid session closed")
