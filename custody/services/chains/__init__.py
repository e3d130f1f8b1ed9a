"""Chain adapters."""

from custody.services.chains.assets import Asset, AssetKind
from custody.services.chains.base import (
    AccountLocks,
    ChainAdapter,
    InboundTransfer,
    TransferReceipt,
)
from custody.services.chains.ethereum_adapter import EthereumAdapter
from custody.services.chains.solana_adapter import SolanaAdapter
from custody.services.chains.tron_adapter import TronAdapter
from custody.services.chains.tron_client import TronGridClient

__all__ = [
    "AccountLocks",
    "Asset",
    "AssetKind",
    "ChainAdapter",
    "EthereumAdapter",
    "InboundTransfer",
    "SolanaAdapter",
    "TransferReceipt",
    "TronAdapter",
    "TronGridClient",
]
