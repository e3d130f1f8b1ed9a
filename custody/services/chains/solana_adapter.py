"""
Solana chain adapter.

SOL and USDC (SPL) deposits, sweeps and withdrawals over solana-py's
AsyncClient with solders transaction building.
"""

import base64
import binascii
import json
from decimal import Decimal
from typing import Any

import base58
from loguru import logger
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferCheckedParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)

from custody.config.constants import CHAIN_SOLANA
from custody.services.chains.assets import SOL, Asset, usdc_spl
from custody.services.chains.base import ChainAdapter, InboundTransfer, TransferReceipt
from custody.utils.exceptions import ChainUnavailable, InvalidAddress, TransferRejected
from custody.utils.security import mask_address, mask_tx_hash
from custody.utils.units import from_base_units, to_base_units

_TRANSPORT_ERRORS = (SolanaRpcException, OSError, TimeoutError)
_CONFIRMED_STATUSES = (
    TransactionConfirmationStatus.Confirmed,
    TransactionConfirmationStatus.Finalized,
)


def _all_instructions(tx: dict[str, Any]) -> list[dict[str, Any]]:
    """Top-level and inner instructions of a jsonParsed transaction."""
    message = tx.get("transaction", {}).get("message", {})
    instructions = list(message.get("instructions") or [])
    for inner in (tx.get("meta") or {}).get("innerInstructions") or []:
        instructions.extend(inner.get("instructions") or [])
    return instructions


class SolanaAdapter(ChainAdapter):
    """
    Solana adapter.

    Detection reads the most recent signatures of an address with
    Confirmed commitment and parses system and spl-token transfers,
    inner instructions included. USDC is matched through the owner's
    associated token account.
    """

    chain = CHAIN_SOLANA
    supports_range_queries = True

    def __init__(
        self,
        rpc_url: str,
        network: str,
        usdc_mint: str,
        confirmation_poll_interval: float = 3.0,
        client: AsyncClient | None = None,
    ) -> None:
        """
        Initialize Solana adapter.

        Args:
            rpc_url: JSON-RPC endpoint
            network: Network name (mainnet-beta, testnet, devnet)
            usdc_mint: USDC mint address
            confirmation_poll_interval: Seconds between status polls
            client: Preconfigured client (tests)
        """
        super().__init__(network, SOL, confirmation_poll_interval)
        self.client = client or AsyncClient(rpc_url, commitment=Confirmed)
        self.usdc = usdc_spl(usdc_mint)
        self._usdc_mint = Pubkey.from_string(usdc_mint)

    @property
    def assets(self) -> list[Asset]:
        return [SOL, self.usdc]

    # ------------------------------------------------------------------
    # Addresses and signers
    # ------------------------------------------------------------------

    def is_valid_address(self, address: str) -> bool:
        """Base58 string decoding to a 32-byte public key."""
        if not isinstance(address, str) or not 32 <= len(address) <= 44:
            return False
        try:
            return len(base58.b58decode(address)) == 32
        except ValueError:
            return False

    def _pubkey(self, address: str) -> Pubkey:
        if not self.is_valid_address(address):
            raise InvalidAddress(f"Invalid solana address: {address}")
        return Pubkey.from_string(address)

    def load_signer(self, secret: str) -> Keypair:
        """
        Build keypair from a stored secret key.

        Accepts base64 of the 64-byte secret, a JSON byte array or base58.
        """
        secret = secret.strip()
        if secret.startswith("["):
            return Keypair.from_bytes(bytes(json.loads(secret)))
        try:
            raw = base64.b64decode(secret, validate=True)
        except binascii.Error:
            raw = b""
        if len(raw) == 64:
            return Keypair.from_bytes(raw)
        return Keypair.from_base58_string(secret)

    def signer_address(self, signer: Keypair) -> str:
        return str(signer.pubkey())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_balance(self, address: str, asset: Asset | None = None) -> Decimal:
        asset = asset or SOL
        owner = self._pubkey(address)

        try:
            if asset.is_native:
                resp = await self.client.get_balance(owner, commitment=Confirmed)
                return from_base_units(resp.value, asset.decimals)

            ata = get_associated_token_address(owner, Pubkey.from_string(asset.contract))
            info = await self.client.get_account_info(ata, commitment=Confirmed)
            if info.value is None:
                return Decimal("0")
            resp = await self.client.get_token_account_balance(ata, commitment=Confirmed)
            return from_base_units(int(resp.value.amount), asset.decimals)
        except (RPCException, *_TRANSPORT_ERRORS) as e:
            raise ChainUnavailable(self.chain, f"balance of {mask_address(address)}: {e}") from e

    async def get_block_height(self) -> int:
        try:
            resp = await self.client.get_slot(commitment=Confirmed)
        except (RPCException, *_TRANSPORT_ERRORS) as e:
            raise ChainUnavailable(self.chain, f"get_slot: {e}") from e
        return int(resp.value)

    async def list_recent_inbound_transfers(
        self,
        address: str,
        limit: int,
        from_height: int | None = None,
        to_height: int | None = None,
        assets: list[Asset] | None = None,
    ) -> list[InboundTransfer]:
        """
        Inbound SOL/USDC transfers of an address.

        Without from_height only the newest `limit` signatures are read.
        With from_height, signatures are paged backwards until the window
        start is passed, so a busy address never loses older deposits.
        """
        owner = self._pubkey(address)
        wanted = {a.symbol for a in (assets or self.assets)}
        usdc_account = str(get_associated_token_address(owner, self._usdc_mint))

        transfers: list[InboundTransfer] = []
        for info in await self._signatures_in_window(owner, limit, from_height):
            if info.err is not None:
                continue
            slot = int(info.slot)
            if from_height is not None and slot < from_height:
                continue
            if to_height is not None and slot > to_height:
                continue

            signature = str(info.signature)
            tx = await self._get_parsed_transaction(info.signature)
            if tx is None:
                continue

            transfers.extend(
                self._parse_transfers(tx, signature, address, usdc_account, slot, wanted)
            )

        return transfers

    async def _signatures_in_window(
        self, owner: Pubkey, limit: int, from_height: int | None
    ) -> list[Any]:
        """Signatures newest first, paged with `before` down to from_height."""
        signatures: list[Any] = []
        before: Signature | None = None
        while True:
            try:
                resp = await self.client.get_signatures_for_address(
                    owner, before=before, limit=limit, commitment=Confirmed
                )
            except (RPCException, *_TRANSPORT_ERRORS) as e:
                raise ChainUnavailable(
                    self.chain, f"signatures of {mask_address(str(owner))}: {e}"
                ) from e

            page = list(resp.value)
            signatures.extend(page)
            if from_height is None or len(page) < limit:
                return signatures
            if int(page[-1].slot) < from_height:
                return signatures
            before = page[-1].signature

    async def _get_parsed_transaction(self, signature: Signature) -> dict[str, Any] | None:
        """Fetch transaction as a plain jsonParsed dict."""
        try:
            resp = await self.client.get_transaction(
                signature,
                encoding="jsonParsed",
                commitment=Confirmed,
                max_supported_transaction_version=0,
            )
        except (RPCException, *_TRANSPORT_ERRORS) as e:
            raise ChainUnavailable(
                self.chain, f"transaction {mask_tx_hash(str(signature))}: {e}"
            ) from e

        if resp.value is None:
            return None
        payload = json.loads(resp.to_json())
        return payload.get("result", payload)

    def _parse_transfers(
        self,
        tx: dict[str, Any],
        signature: str,
        address: str,
        usdc_account: str,
        slot: int,
        wanted: set[str],
    ) -> list[InboundTransfer]:
        """
        Extract SOL and USDC received by address.

        Amounts are summed per asset, one transfer per asset and signature.
        When a transaction pays both assets, the USDC transfer is keyed
        "<signature>:USDC" so each asset credits once.
        """
        meta = tx.get("meta") or {}
        if meta.get("err") is not None:
            return []

        totals: dict[str, int] = {}
        senders: dict[str, str | None] = {}
        for ix in _all_instructions(tx):
            parsed = ix.get("parsed")
            if not isinstance(parsed, dict):
                continue
            kind = parsed.get("type")
            info = parsed.get("info") or {}
            program = ix.get("program")

            if (
                program == "system"
                and kind == "transfer"
                and info.get("destination") == address
            ):
                symbol = SOL.symbol
                raw = int(info.get("lamports", 0))
                sender = info.get("source")

            elif (
                program == "spl-token"
                and kind in ("transfer", "transferChecked")
                and info.get("destination") == usdc_account
            ):
                if kind == "transferChecked":
                    if info.get("mint") != self.usdc.contract:
                        continue
                    raw = int((info.get("tokenAmount") or {}).get("amount", 0))
                else:
                    raw = int(info.get("amount", 0))
                symbol = self.usdc.symbol
                sender = (
                    info.get("authority")
                    or info.get("multisigAuthority")
                    or info.get("source")
                )

            else:
                continue

            if raw > 0:
                totals[symbol] = totals.get(symbol, 0) + raw
                senders.setdefault(symbol, sender)

        transfers = []
        for asset in (SOL, self.usdc):
            raw = totals.get(asset.symbol)
            if not raw or asset.symbol not in wanted:
                continue
            tx_id = signature
            if not asset.is_native and SOL.symbol in totals:
                tx_id = f"{signature}:{asset.symbol}"
            transfers.append(InboundTransfer(
                tx_id=tx_id,
                from_address=senders[asset.symbol],
                to_address=address,
                amount=from_base_units(raw, asset.decimals),
                asset=asset,
                block_height=slot,
            ))

        return transfers

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _submit_transfer(
        self, signer: Keypair, to: str, amount: Decimal, asset: Asset
    ) -> str:
        sender = signer.pubkey()
        dest = Pubkey.from_string(to)

        try:
            if asset.is_native:
                instructions = [
                    transfer(TransferParams(
                        from_pubkey=sender,
                        to_pubkey=dest,
                        lamports=to_base_units(amount, asset.decimals),
                    ))
                ]
            else:
                instructions = await self._token_transfer_instructions(
                    sender, dest, amount, asset
                )

            blockhash = (await self.client.get_latest_blockhash(commitment=Confirmed)).value.blockhash
            tx = Transaction.new_signed_with_payer(instructions, sender, [signer], blockhash)
            resp = await self.client.send_raw_transaction(
                bytes(tx),
                opts=TxOpts(skip_preflight=False, preflight_commitment=Confirmed),
            )
        except RPCException as e:
            raise TransferRejected(self.chain, str(e)) from e
        except _TRANSPORT_ERRORS as e:
            raise ChainUnavailable(self.chain, f"send transaction: {e}") from e

        signature = str(resp.value)
        logger.info(f"solana: submitted {mask_tx_hash(signature)}")
        return signature

    async def _token_transfer_instructions(
        self, sender: Pubkey, dest: Pubkey, amount: Decimal, asset: Asset
    ) -> list[Any]:
        """
        Build token transfer, creating the recipient's token account if absent.

        The sender pays the account rent.
        """
        mint = Pubkey.from_string(asset.contract)
        source_ata = get_associated_token_address(sender, mint)
        dest_ata = get_associated_token_address(dest, mint)

        instructions = []
        dest_info = await self.client.get_account_info(dest_ata, commitment=Confirmed)
        if dest_info.value is None:
            logger.info(
                f"solana: creating {asset.symbol} token account for {mask_address(str(dest))}"
            )
            instructions.append(create_associated_token_account(sender, dest, mint))

        instructions.append(transfer_checked(TransferCheckedParams(
            program_id=TOKEN_PROGRAM_ID,
            source=source_ata,
            mint=mint,
            dest=dest_ata,
            owner=sender,
            amount=to_base_units(amount, asset.decimals),
            decimals=asset.decimals,
        )))
        return instructions

    async def wait_for_confirmation(
        self, tx_id: str, timeout: float
    ) -> TransferReceipt:
        return await self._poll_until_confirmed(tx_id, timeout, self._fetch_receipt)

    async def _fetch_receipt(self, tx_id: str) -> TransferReceipt | None:
        try:
            resp = await self.client.get_signature_statuses([Signature.from_string(tx_id)])
        except (RPCException, *_TRANSPORT_ERRORS) as e:
            raise ChainUnavailable(self.chain, f"signature status: {e}") from e

        status = resp.value[0] if resp.value else None
        if status is None or status.confirmation_status not in _CONFIRMED_STATUSES:
            return None

        return TransferReceipt(
            tx_id=tx_id,
            success=status.err is None,
            block_height=int(status.slot),
            error=str(status.err) if status.err is not None else None,
        )

    async def close(self) -> None:
        await self.client.close()
