"""
Ethereum chain adapter.

Native ETH and ERC-20 deposits, sweeps and withdrawals over AsyncWeb3.
"""

import re
from collections import OrderedDict
from decimal import Decimal
from typing import Any

import aiohttp
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import is_address, to_checksum_address
from loguru import logger
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception, Web3RPCError

from custody.config.constants import (
    CHAIN_ETHEREUM,
    ERC20_ABI,
    ERC20_TRANSFER_GAS,
    ERC20_TRANSFER_TOPIC,
    ETH_BLOCK_CACHE_SIZE,
    ETH_CONFIRMATION_THRESHOLD,
    ETH_TRANSFER_GAS,
)
from custody.services.chains.assets import ETH, Asset
from custody.services.chains.base import ChainAdapter, InboundTransfer, TransferReceipt
from custody.utils.exceptions import (
    ChainUnavailable,
    ConfirmationTimeout,
    InvalidAddress,
    TransferRejected,
)
from custody.utils.security import mask_address, mask_tx_hash
from custody.utils.units import from_base_units, to_base_units

_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
_TRANSPORT_ERRORS = (Web3Exception, aiohttp.ClientError, OSError, TimeoutError)


class EthereumAdapter(ChainAdapter):
    """
    Ethereum adapter.

    Native deposits are found by scanning full blocks in a bounded range;
    ERC-20 deposits through Transfer logs filtered on the recipient topic.
    """

    chain = CHAIN_ETHEREUM
    supports_range_queries = True

    def __init__(
        self,
        rpc_url: str,
        network: str,
        tokens: list[Asset] | None = None,
        confirmation_poll_interval: float = 3.0,
        web3: AsyncWeb3 | None = None,
    ) -> None:
        """
        Initialize Ethereum adapter.

        Args:
            rpc_url: HTTP JSON-RPC endpoint
            network: Network name (mainnet, sepolia)
            tokens: ERC-20 assets to track
            confirmation_poll_interval: Seconds between receipt polls
            web3: Preconfigured AsyncWeb3 (tests)
        """
        super().__init__(network, ETH, confirmation_poll_interval)
        self.web3 = web3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self.tokens = list(tokens or [])
        self._block_cache: OrderedDict[int, Any] = OrderedDict()

    @property
    def assets(self) -> list[Asset]:
        return [ETH, *self.tokens]

    # ------------------------------------------------------------------
    # Addresses and signers
    # ------------------------------------------------------------------

    def is_valid_address(self, address: str) -> bool:
        """0x-prefixed 40 hex chars; mixed case must carry a valid checksum."""
        if not isinstance(address, str) or not _ADDRESS_PATTERN.match(address):
            return False
        return is_address(address)

    def normalize_address(self, address: str) -> str:
        return to_checksum_address(address)

    def _checksum(self, address: str) -> str:
        if not self.is_valid_address(address):
            raise InvalidAddress(f"Invalid ethereum address: {address}")
        return to_checksum_address(address)

    def load_signer(self, secret: str) -> LocalAccount:
        return Account.from_key(secret.strip())

    def signer_address(self, signer: LocalAccount) -> str:
        return signer.address

    def _contract(self, asset: Asset):
        return self.web3.eth.contract(
            address=to_checksum_address(asset.contract), abi=ERC20_ABI
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_balance(self, address: str, asset: Asset | None = None) -> Decimal:
        asset = asset or ETH
        owner = self._checksum(address)
        try:
            if asset.is_native:
                raw = await self.web3.eth.get_balance(owner)
            else:
                raw = await self._contract(asset).functions.balanceOf(owner).call()
        except _TRANSPORT_ERRORS as e:
            raise ChainUnavailable(self.chain, f"balance of {mask_address(address)}: {e}") from e
        return from_base_units(raw, asset.decimals)

    async def get_block_height(self) -> int:
        """Latest block with at least the confirmation threshold."""
        try:
            head = await self.web3.eth.block_number
        except _TRANSPORT_ERRORS as e:
            raise ChainUnavailable(self.chain, f"block_number: {e}") from e
        return max(0, head - (ETH_CONFIRMATION_THRESHOLD - 1))

    async def list_recent_inbound_transfers(
        self,
        address: str,
        limit: int,
        from_height: int | None = None,
        to_height: int | None = None,
        assets: list[Asset] | None = None,
    ) -> list[InboundTransfer]:
        owner = self._checksum(address)
        wanted = assets or self.assets

        if to_height is None:
            to_height = await self.get_block_height()
        if from_height is None:
            from_height = max(0, to_height - limit + 1)
        if from_height > to_height:
            return []

        transfers: list[InboundTransfer] = []
        for asset in wanted:
            if asset.is_native:
                transfers.extend(await self._scan_native(owner, from_height, to_height))
            elif asset.contract:
                transfers.extend(
                    await self._scan_token(owner, asset, from_height, to_height)
                )
        return transfers

    async def _get_block(self, number: int) -> Any:
        """Fetch full block, served from a bounded cache when possible."""
        block = self._block_cache.get(number)
        if block is not None:
            self._block_cache.move_to_end(number)
            return block

        try:
            block = await self.web3.eth.get_block(number, full_transactions=True)
        except _TRANSPORT_ERRORS as e:
            raise ChainUnavailable(self.chain, f"get_block {number}: {e}") from e

        self._block_cache[number] = block
        while len(self._block_cache) > ETH_BLOCK_CACHE_SIZE:
            self._block_cache.popitem(last=False)
        return block

    async def _scan_native(
        self, owner: str, from_block: int, to_block: int
    ) -> list[InboundTransfer]:
        transfers = []
        for number in range(from_block, to_block + 1):
            block = await self._get_block(number)
            for tx in block["transactions"]:
                to = tx.get("to")
                value = int(tx.get("value", 0))
                if not to or value <= 0 or to_checksum_address(to) != owner:
                    continue

                tx_hash = Web3.to_hex(tx["hash"])
                try:
                    receipt = await self.web3.eth.get_transaction_receipt(tx["hash"])
                except _TRANSPORT_ERRORS as e:
                    raise ChainUnavailable(
                        self.chain, f"receipt {mask_tx_hash(tx_hash)}: {e}"
                    ) from e
                if receipt["status"] != 1:
                    continue

                transfers.append(InboundTransfer(
                    tx_id=tx_hash,
                    from_address=tx.get("from"),
                    to_address=owner,
                    amount=from_base_units(value, ETH.decimals),
                    asset=ETH,
                    block_height=number,
                ))
        return transfers

    async def _scan_token(
        self, owner: str, asset: Asset, from_block: int, to_block: int
    ) -> list[InboundTransfer]:
        recipient_topic = "0x" + "0" * 24 + owner[2:].lower()
        try:
            logs = await self.web3.eth.get_logs({
                "fromBlock": from_block,
                "toBlock": to_block,
                "address": to_checksum_address(asset.contract),
                "topics": [ERC20_TRANSFER_TOPIC, None, recipient_topic],
            })
        except _TRANSPORT_ERRORS as e:
            raise ChainUnavailable(
                self.chain, f"{asset.symbol} logs {from_block}-{to_block}: {e}"
            ) from e

        # One deposit per transaction, summing multi-log transfers
        totals: dict[str, int] = {}
        details: dict[str, tuple[str | None, int | None]] = {}
        for log in logs:
            if log.get("removed"):
                continue
            tx_hash = Web3.to_hex(log["transactionHash"])
            value = int.from_bytes(bytes(log["data"]), "big") if log["data"] else 0
            sender = to_checksum_address(bytes(log["topics"][1])[-20:])
            totals[tx_hash] = totals.get(tx_hash, 0) + value
            details.setdefault(tx_hash, (sender, log.get("blockNumber")))

        return [
            InboundTransfer(
                tx_id=tx_hash,
                from_address=details[tx_hash][0],
                to_address=owner,
                amount=from_base_units(value, asset.decimals),
                asset=asset,
                block_height=details[tx_hash][1],
            )
            for tx_hash, value in totals.items()
            if value > 0
        ]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _submit_transfer(
        self, signer: LocalAccount, to: str, amount: Decimal, asset: Asset
    ) -> str:
        to_checksum = to_checksum_address(to)

        try:
            nonce = await self.web3.eth.get_transaction_count(signer.address, "pending")
            gas_price = await self.web3.eth.gas_price
            chain_id = await self.web3.eth.chain_id

            if asset.is_native:
                tx = {
                    "to": to_checksum,
                    "value": to_base_units(amount, asset.decimals),
                    "gas": ETH_TRANSFER_GAS,
                    "gasPrice": gas_price,
                    "nonce": nonce,
                    "chainId": chain_id,
                }
            else:
                tx = await self._contract(asset).functions.transfer(
                    to_checksum, to_base_units(amount, asset.decimals)
                ).build_transaction({
                    "from": signer.address,
                    "gas": ERC20_TRANSFER_GAS,
                    "gasPrice": gas_price,
                    "nonce": nonce,
                    "chainId": chain_id,
                })

            signed = signer.sign_transaction(tx)
            tx_hash = await self.web3.eth.send_raw_transaction(signed.raw_transaction)
        except (Web3RPCError, ContractLogicError) as e:
            raise TransferRejected(self.chain, str(e)) from e
        except _TRANSPORT_ERRORS as e:
            raise ChainUnavailable(self.chain, f"send transaction: {e}") from e

        tx_hex = Web3.to_hex(tx_hash)
        logger.info(f"ethereum: submitted {mask_tx_hash(tx_hex)} (nonce={nonce})")
        return tx_hex

    async def wait_for_confirmation(
        self, tx_id: str, timeout: float
    ) -> TransferReceipt:
        try:
            receipt = await self.web3.eth.wait_for_transaction_receipt(
                tx_id, timeout=timeout, poll_latency=self.confirmation_poll_interval
            )
        except TimeExhausted as e:
            raise ConfirmationTimeout(tx_id, timeout) from e
        except _TRANSPORT_ERRORS as e:
            raise ChainUnavailable(self.chain, f"receipt {mask_tx_hash(tx_id)}: {e}") from e

        success = receipt["status"] == 1
        return TransferReceipt(
            tx_id=tx_id,
            success=success,
            block_height=receipt["blockNumber"],
            error=None if success else "execution reverted",
        )

    async def close(self) -> None:
        provider = self.web3.provider
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
