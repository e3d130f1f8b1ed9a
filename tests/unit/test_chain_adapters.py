"""
Unit tests for chain adapter helpers.

Tests cover:
- Address validation per chain (no network calls)
- Signer loading and pool address derivation
- Transfer parsing from RPC payloads
- Tron address/ABI encoding helpers
"""

import base64
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from eth_account import Account
from solders.keypair import Keypair
from spl.token.instructions import get_associated_token_address

from custody.services.chains.assets import erc20
from custody.services.chains.ethereum_adapter import EthereumAdapter
from custody.services.chains.solana_adapter import SolanaAdapter
from custody.services.chains.tron_adapter import TronAdapter
from custody.services.chains.tron_client import (
    TronGridClient,
    base58_to_hex,
    decode_message,
    encode_address_param,
    encode_uint256_param,
    hex_to_base58,
)
from custody.utils.exceptions import InvalidAddress
from tests.fakes import USDC_MINT

USDT_CONTRACT = "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"
USDT_CONTRACT_HEX = "41a614f803b6fd780986a42c78ec9c7f77e6ded13c"
ETH_CHECKSUMMED = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
ETH_KEY = "0x" + "11" * 32


def _signature_info(signature: str, slot: int) -> SimpleNamespace:
    return SimpleNamespace(signature=signature, slot=slot, err=None)


@pytest.fixture
def solana():
    return SolanaAdapter("http://localhost:8899", "devnet", USDC_MINT)


@pytest.fixture
def ethereum():
    return EthereumAdapter("http://localhost:8545", "sepolia")


@pytest.fixture
def tron():
    return TronAdapter(
        client=TronGridClient("https://api.shasta.trongrid.io"),
        network="shasta",
        usdt_contract=USDT_CONTRACT,
    )


class TestSolanaAdapter:
    """Solana addresses, signers and parsing."""

    def test_valid_addresses(self, solana):
        assert solana.is_valid_address(USDC_MINT)
        assert solana.is_valid_address(str(Keypair().pubkey()))

    @pytest.mark.parametrize("address", ["", "short", "0" * 44, ETH_CHECKSUMMED, None])
    def test_invalid_addresses(self, solana, address):
        assert not solana.is_valid_address(address)

    def test_load_signer_formats(self, solana):
        keypair = Keypair()
        expected = str(keypair.pubkey())

        as_base58 = solana.load_signer(str(keypair))
        as_base64 = solana.load_signer(base64.b64encode(bytes(keypair)).decode())
        as_json = solana.load_signer(str(list(bytes(keypair))))

        for signer in (as_base58, as_base64, as_json):
            assert solana.signer_address(signer) == expected

    def test_pool_signer(self, solana):
        keypair = Keypair()
        solana.set_pool_signer(str(keypair))

        assert solana.pool_address == str(keypair.pubkey())

    @pytest.mark.asyncio
    async def test_submit_to_invalid_address_raises_before_rpc(self, solana):
        with pytest.raises(InvalidAddress):
            await solana.submit_transfer(Keypair(), "not-valid", Decimal("1"))

    def test_parse_sol_and_usdc_transfers(self, solana):
        owner = Keypair().pubkey()
        address = str(owner)
        usdc_account = str(get_associated_token_address(owner, solana._usdc_mint))
        tx = {
            "meta": {
                "err": None,
                "innerInstructions": [{
                    "index": 0,
                    "instructions": [{
                        "program": "spl-token",
                        "parsed": {
                            "type": "transferChecked",
                            "info": {
                                "destination": usdc_account,
                                "mint": USDC_MINT,
                                "authority": "sender_wallet",
                                "tokenAmount": {"amount": "12500000", "decimals": 6},
                            },
                        },
                    }],
                }],
            },
            "transaction": {"message": {"instructions": [
                {
                    "program": "system",
                    "parsed": {
                        "type": "transfer",
                        "info": {"source": "sender_wallet", "destination": address, "lamports": 2_500_000_000},
                    },
                },
                {
                    "program": "system",
                    "parsed": {
                        "type": "transfer",
                        "info": {"source": address, "destination": "someone_else", "lamports": 5},
                    },
                },
            ]}},
        }

        transfers = solana._parse_transfers(tx, "sig", address, usdc_account, 321, {"SOL", "USDC"})

        assert [(t.asset.symbol, t.amount) for t in transfers] == [
            ("SOL", Decimal("2.5")),
            ("USDC", Decimal("12.5")),
        ]
        assert [t.tx_id for t in transfers] == ["sig", "sig:USDC"]
        assert all(t.block_height == 321 for t in transfers)
        assert transfers[1].from_address == "sender_wallet"

    def test_failed_transaction_ignored(self, solana):
        tx = {"meta": {"err": {"InstructionError": [0, "Custom"]}}, "transaction": {}}

        assert solana._parse_transfers(tx, "sig", "addr", "ata", 1, {"SOL"}) == []

    def test_transfers_summed_per_signature(self, solana):
        address = str(Keypair().pubkey())
        tx = {
            "meta": {"err": None},
            "transaction": {"message": {"instructions": [
                {
                    "program": "system",
                    "parsed": {
                        "type": "transfer",
                        "info": {"source": "payer", "destination": address, "lamports": lamports},
                    },
                }
                for lamports in (1_000_000_000, 2_000_000_000)
            ]}},
        }

        transfers = solana._parse_transfers(tx, "SIG1", address, "ata", 5, {"SOL", "USDC"})

        assert [(t.tx_id, t.amount) for t in transfers] == [("SIG1", Decimal("3"))]
        assert transfers[0].from_address == "payer"

    @pytest.mark.asyncio
    async def test_signatures_paged_to_window_start(self, solana):
        owner = Keypair().pubkey()
        address = str(owner)
        pages = [
            [_signature_info("s3", 120), _signature_info("s2", 110)],
            [_signature_info("s1", 100), _signature_info("s0", 90)],
        ]
        solana.client = AsyncMock()
        solana.client.get_signatures_for_address.side_effect = [
            SimpleNamespace(value=page) for page in pages
        ]

        def sol_tx(signature):
            return {
                "meta": {"err": None},
                "transaction": {"message": {"instructions": [{
                    "program": "system",
                    "parsed": {
                        "type": "transfer",
                        "info": {"source": "payer", "destination": address, "lamports": 1_000_000_000},
                    },
                }]}},
            }

        with patch.object(solana, "_get_parsed_transaction", AsyncMock(side_effect=sol_tx)):
            transfers = await solana.list_recent_inbound_transfers(
                address, 2, from_height=95, to_height=115
            )

        assert [t.tx_id for t in transfers] == ["s2", "s1"]
        second_call = solana.client.get_signatures_for_address.call_args_list[1]
        assert second_call.kwargs["before"] == "s2"

    @pytest.mark.asyncio
    async def test_single_page_without_window(self, solana):
        solana.client = AsyncMock()
        solana.client.get_signatures_for_address.return_value = SimpleNamespace(
            value=[_signature_info("s1", 100), _signature_info("s0", 90)]
        )

        with patch.object(solana, "_get_parsed_transaction", AsyncMock(return_value=None)):
            await solana.list_recent_inbound_transfers(str(Keypair().pubkey()), 2)

        assert solana.client.get_signatures_for_address.await_count == 1


class TestEthereumAdapter:
    """Ethereum addresses and signers."""

    def test_valid_addresses(self, ethereum):
        assert ethereum.is_valid_address(ETH_CHECKSUMMED)
        assert ethereum.is_valid_address(ETH_CHECKSUMMED.lower())

    @pytest.mark.parametrize("address", [
        "0x5aaeb6053F3E94C9b9A09f33669435E7Ef1BeAed",  # bad checksum
        "5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",
        "0x1234",
        USDT_CONTRACT,
    ])
    def test_invalid_addresses(self, ethereum, address):
        assert not ethereum.is_valid_address(address)

    def test_case_insensitive_comparison(self, ethereum):
        assert ethereum.same_address(ETH_CHECKSUMMED, ETH_CHECKSUMMED.lower())

    def test_signer(self, ethereum):
        ethereum.set_pool_signer(ETH_KEY)

        assert ethereum.pool_address == Account.from_key(ETH_KEY).address

    def test_no_pool_key(self, ethereum):
        ethereum.set_pool_signer(None)

        assert ethereum.pool_address is None

    def test_token_assets(self):
        adapter = EthereumAdapter(
            "http://localhost:8545",
            "sepolia",
            tokens=[erc20("USDT", ETH_CHECKSUMMED)],
        )

        assert [a.symbol for a in adapter.assets] == ["ETH", "USDT"]
        assert adapter.get_asset("usdt").decimals == 6


class TestTronAdapter:
    """Tron addresses, signers and parsing."""

    def test_valid_address(self, tron):
        assert tron.is_valid_address(USDT_CONTRACT)

    @pytest.mark.parametrize("address", [
        USDT_CONTRACT[:-1] + "x",
        "T123",
        ETH_CHECKSUMMED,
        USDC_MINT,
    ])
    def test_invalid_addresses(self, tron, address):
        assert not tron.is_valid_address(address)

    def test_signer_address_is_valid_tron_address(self, tron):
        signer = tron.load_signer("11" * 32)
        address = tron.signer_address(signer)

        assert tron.is_valid_address(address)
        assert base58_to_hex(address)[2:] == Account.from_key(ETH_KEY).address[2:].lower()

    def test_configured_pool_address_without_key(self):
        adapter = TronAdapter(
            client=TronGridClient("https://api.shasta.trongrid.io"),
            network="shasta",
            usdt_contract=USDT_CONTRACT,
            pool_address=USDT_CONTRACT,
        )

        assert adapter.pool_address == USDT_CONTRACT

    def test_parse_trx_transfer(self, tron):
        sender = tron.signer_address(tron.load_signer("22" * 32))
        tx = {
            "txID": "abc123",
            "blockNumber": 55,
            "ret": [{"contractRet": "SUCCESS"}],
            "raw_data": {"contract": [{
                "type": "TransferContract",
                "parameter": {"value": {
                    "amount": 1_500_000,
                    "owner_address": base58_to_hex(sender),
                    "to_address": USDT_CONTRACT_HEX,
                }},
            }]},
        }

        transfer = tron._parse_trx_transfer(tx, USDT_CONTRACT)

        assert transfer.amount == Decimal("1.5")
        assert transfer.from_address == sender
        assert transfer.block_height == 55

    def test_parse_failed_trx_transfer(self, tron):
        tx = {"txID": "abc", "ret": [{"contractRet": "REVERT"}], "raw_data": {}}

        assert tron._parse_trx_transfer(tx, USDT_CONTRACT) is None

    def test_parse_trc20_transfer(self, tron):
        item = {
            "transaction_id": "usdt_tx",
            "token_info": {"address": USDT_CONTRACT, "decimals": 6},
            "type": "Transfer",
            "from": "Tsender",
            "to": "Trecipient",
            "value": "25000000",
        }

        transfer = tron._parse_trc20_transfer(item, "Trecipient")
        other_token = tron._parse_trc20_transfer(
            {**item, "token_info": {"address": "Tother", "decimals": 6}}, "Trecipient"
        )

        assert transfer.amount == Decimal("25")
        assert transfer.asset.symbol == "USDT"
        assert other_token is None


class TestTronEncoding:
    """Address and ABI helpers."""

    def test_hex_base58_conversion(self):
        assert base58_to_hex(USDT_CONTRACT) == USDT_CONTRACT_HEX
        assert hex_to_base58(USDT_CONTRACT_HEX) == USDT_CONTRACT
        assert hex_to_base58(USDT_CONTRACT) == USDT_CONTRACT

    def test_encode_params(self):
        assert encode_uint256_param(1) == "0" * 63 + "1"
        encoded = encode_address_param(USDT_CONTRACT)
        assert len(encoded) == 64
        assert encoded.endswith(USDT_CONTRACT_HEX[2:])

    def test_decode_message(self):
        assert decode_message("6f6f7073") == "oops"
        assert decode_message("not hex") == "not hex"
        assert decode_message(None) == ""
