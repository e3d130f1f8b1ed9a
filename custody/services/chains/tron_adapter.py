"""
Tron chain adapter.

TRX and USDT (TRC-20) deposits, sweeps and withdrawals over TronGrid.
Transactions are built by the node and signed locally with secp256k1.
"""

from decimal import Decimal
from typing import Any

import base58
from eth_keys import keys
from loguru import logger

from custody.config.constants import CHAIN_TRON, TRON_TRC20_FEE_LIMIT_SUN
from custody.services.chains.assets import TRX, Asset, usdt_trc20
from custody.services.chains.base import ChainAdapter, InboundTransfer, TransferReceipt
from custody.services.chains.tron_client import (
    TRON_ADDRESS_PREFIX,
    TronGridClient,
    decode_message,
    encode_address_param,
    encode_uint256_param,
    hex_to_base58,
)
from custody.utils.exceptions import ChainUnavailable, InvalidAddress, TransferRejected
from custody.utils.security import mask_address, mask_tx_hash
from custody.utils.units import from_base_units, to_base_units


class TronAdapter(ChainAdapter):
    """
    Tron adapter.

    TronGrid account history has no reliable block-range filter, so
    detection re-reads a fixed recent window and relies on dedup by txID.
    """

    chain = CHAIN_TRON
    supports_range_queries = False

    def __init__(
        self,
        client: TronGridClient,
        network: str,
        usdt_contract: str,
        pool_address: str | None = None,
        confirmation_poll_interval: float = 3.0,
    ) -> None:
        """
        Initialize Tron adapter.

        Args:
            client: TronGrid client
            network: Network name (mainnet, shasta, nile)
            usdt_contract: USDT TRC-20 contract address
            pool_address: Main pool address used when no pool key is loaded
            confirmation_poll_interval: Seconds between status polls
        """
        super().__init__(network, TRX, confirmation_poll_interval)
        self.client = client
        self.usdt = usdt_trc20(usdt_contract)
        self._configured_pool_address = pool_address

    @property
    def assets(self) -> list[Asset]:
        return [TRX, self.usdt]

    # ------------------------------------------------------------------
    # Addresses and signers
    # ------------------------------------------------------------------

    def is_valid_address(self, address: str) -> bool:
        """Base58check, 21 bytes, 0x41 prefix."""
        if not isinstance(address, str) or len(address) != 34 or not address.startswith("T"):
            return False
        try:
            raw = base58.b58decode_check(address)
        except ValueError:
            return False
        return len(raw) == 21 and raw[:1] == TRON_ADDRESS_PREFIX

    def _require_valid(self, address: str) -> str:
        if not self.is_valid_address(address):
            raise InvalidAddress(f"Invalid tron address: {address}")
        return address

    def load_signer(self, secret: str) -> keys.PrivateKey:
        secret = secret.strip()
        if secret.startswith("0x"):
            secret = secret[2:]
        return keys.PrivateKey(bytes.fromhex(secret))

    def signer_address(self, signer: keys.PrivateKey) -> str:
        raw = TRON_ADDRESS_PREFIX + signer.public_key.to_canonical_address()
        return base58.b58encode_check(raw).decode()

    def set_pool_signer(self, secret: str | None) -> None:
        super().set_pool_signer(secret)
        derived = super().pool_address
        if (
            derived
            and self._configured_pool_address
            and derived != self._configured_pool_address
        ):
            logger.warning(
                f"tron: configured pool address {mask_address(self._configured_pool_address)} "
                f"does not match pool key address {mask_address(derived)}"
            )

    @property
    def pool_address(self) -> str | None:
        return super().pool_address or self._configured_pool_address

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_balance(self, address: str, asset: Asset | None = None) -> Decimal:
        asset = asset or TRX
        self._require_valid(address)

        if asset.is_native:
            account = await self.client.get_account(address)
            return from_base_units(int(account.get("balance", 0)), asset.decimals)

        result = await self.client.trigger_constant_contract(
            address, asset.contract, "balanceOf(address)", encode_address_param(address)
        )
        constant = result.get("constant_result") or []
        if not constant:
            raise ChainUnavailable(
                self.chain, f"balanceOf {mask_address(address)}: empty result"
            )
        raw = int(constant[0], 16) if constant[0] else 0
        return from_base_units(raw, asset.decimals)

    async def get_block_height(self) -> int:
        block = await self.client.get_now_block()
        try:
            return int(block["block_header"]["raw_data"]["number"])
        except (KeyError, TypeError, ValueError) as e:
            raise ChainUnavailable(self.chain, "getnowblock: malformed response") from e

    async def list_recent_inbound_transfers(
        self,
        address: str,
        limit: int,
        from_height: int | None = None,
        to_height: int | None = None,
        assets: list[Asset] | None = None,
    ) -> list[InboundTransfer]:
        self._require_valid(address)
        wanted = {a.symbol for a in (assets or self.assets)}

        transfers: list[InboundTransfer] = []
        if "TRX" in wanted:
            for tx in await self.client.get_transactions(address, limit):
                transfer = self._parse_trx_transfer(tx, address)
                if transfer is not None:
                    transfers.append(transfer)

        if "USDT" in wanted:
            for item in await self.client.get_trc20_transactions(
                address, self.usdt.contract, limit
            ):
                transfer = self._parse_trc20_transfer(item, address)
                if transfer is not None:
                    transfers.append(transfer)

        return transfers

    def _parse_trx_transfer(self, tx: dict[str, Any], address: str) -> InboundTransfer | None:
        ret = tx.get("ret") or [{}]
        if ret[0].get("contractRet", "SUCCESS") != "SUCCESS":
            return None

        contracts = (tx.get("raw_data") or {}).get("contract") or []
        if not contracts or contracts[0].get("type") != "TransferContract":
            return None

        value = (contracts[0].get("parameter") or {}).get("value") or {}
        to_address = value.get("to_address")
        amount = int(value.get("amount", 0))
        if not to_address or amount <= 0 or hex_to_base58(to_address) != address:
            return None

        owner = value.get("owner_address")
        return InboundTransfer(
            tx_id=tx["txID"],
            from_address=hex_to_base58(owner) if owner else None,
            to_address=address,
            amount=from_base_units(amount, TRX.decimals),
            asset=TRX,
            block_height=tx.get("blockNumber"),
        )

    def _parse_trc20_transfer(
        self, item: dict[str, Any], address: str
    ) -> InboundTransfer | None:
        token = item.get("token_info") or {}
        if token.get("address") != self.usdt.contract:
            return None
        if item.get("type", "Transfer") != "Transfer" or item.get("to") != address:
            return None

        raw = int(item.get("value", 0))
        if raw <= 0:
            return None

        return InboundTransfer(
            tx_id=item["transaction_id"],
            from_address=item.get("from"),
            to_address=address,
            amount=from_base_units(raw, int(token.get("decimals", self.usdt.decimals))),
            asset=self.usdt,
            block_height=None,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _submit_transfer(
        self, signer: keys.PrivateKey, to: str, amount: Decimal, asset: Asset
    ) -> str:
        owner = self.signer_address(signer)
        units = to_base_units(amount, asset.decimals)

        if asset.is_native:
            tx = await self.client.create_transaction(owner, to, units)
            if "Error" in tx or "txID" not in tx:
                raise TransferRejected(self.chain, tx.get("Error", "createtransaction failed"))
        else:
            result = await self.client.trigger_smart_contract(
                owner,
                asset.contract,
                "transfer(address,uint256)",
                encode_address_param(to) + encode_uint256_param(units),
                TRON_TRC20_FEE_LIMIT_SUN,
            )
            if not (result.get("result") or {}).get("result") or "transaction" not in result:
                message = decode_message((result.get("result") or {}).get("message"))
                raise TransferRejected(self.chain, message or "triggersmartcontract failed")
            tx = result["transaction"]

        tx["signature"] = [self._sign(signer, tx["txID"])]

        response = await self.client.broadcast_transaction(tx)
        if not response.get("result"):
            code = response.get("code", "UNKNOWN")
            raise TransferRejected(
                self.chain, f"{code}: {decode_message(response.get('message'))}"
            )

        logger.info(f"tron: submitted {mask_tx_hash(tx['txID'])}")
        return tx["txID"]

    @staticmethod
    def _sign(signer: keys.PrivateKey, tx_id: str) -> str:
        """Sign the transaction id hash, v encoded as 27/28."""
        signature = signer.sign_msg_hash(bytes.fromhex(tx_id))
        raw = (
            signature.r.to_bytes(32, "big")
            + signature.s.to_bytes(32, "big")
            + bytes([signature.v + 27])
        )
        return raw.hex()

    async def wait_for_confirmation(
        self, tx_id: str, timeout: float
    ) -> TransferReceipt:
        return await self._poll_until_confirmed(tx_id, timeout, self._fetch_receipt)

    async def _fetch_receipt(self, tx_id: str) -> TransferReceipt | None:
        info = await self.client.get_transaction_info(tx_id)
        if not info or "blockNumber" not in info:
            return None

        receipt_result = (info.get("receipt") or {}).get("result")
        failed = info.get("result") == "FAILED" or (
            receipt_result is not None and receipt_result != "SUCCESS"
        )
        return TransferReceipt(
            tx_id=tx_id,
            success=not failed,
            block_height=int(info["blockNumber"]),
            error=(
                decode_message(info.get("resMessage")) or receipt_result
                if failed
                else None
            ),
        )

    async def close(self) -> None:
        await self.client.close()
