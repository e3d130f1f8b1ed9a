"""
Asset definitions.

Native coins and tokens handled by the chain adapters.
"""

from dataclasses import dataclass
from enum import Enum

from custody.config.constants import (
    CHAIN_ETHEREUM,
    CHAIN_SOLANA,
    CHAIN_TRON,
    ERC20_STABLE_DECIMALS,
    ETH_DECIMALS,
    SOL_DECIMALS,
    TRX_DECIMALS,
    USDC_SPL_DECIMALS,
    USDT_TRC20_DECIMALS,
)


class AssetKind(str, Enum):
    """Native coin or token transfer."""

    NATIVE = "native"
    TOKEN = "token"


@dataclass(frozen=True)
class Asset:
    """Transferable asset on one chain."""

    symbol: str
    chain: str
    kind: AssetKind
    decimals: int
    contract: str | None = None  # Mint / contract address for tokens

    @property
    def is_native(self) -> bool:
        """Whether the asset is the chain's gas currency."""
        return self.kind is AssetKind.NATIVE


SOL = Asset("SOL", CHAIN_SOLANA, AssetKind.NATIVE, SOL_DECIMALS)
ETH = Asset("ETH", CHAIN_ETHEREUM, AssetKind.NATIVE, ETH_DECIMALS)
TRX = Asset("TRX", CHAIN_TRON, AssetKind.NATIVE, TRX_DECIMALS)


def usdc_spl(mint: str) -> Asset:
    """USDC SPL token for a mint address."""
    return Asset("USDC", CHAIN_SOLANA, AssetKind.TOKEN, USDC_SPL_DECIMALS, mint)


def usdt_trc20(contract: str) -> Asset:
    """USDT TRC-20 token for a contract address."""
    return Asset("USDT", CHAIN_TRON, AssetKind.TOKEN, USDT_TRC20_DECIMALS, contract)


def erc20(symbol: str, contract: str, decimals: int = ERC20_STABLE_DECIMALS) -> Asset:
    """ERC-20 token for a contract address."""
    return Asset(symbol, CHAIN_ETHEREUM, AssetKind.TOKEN, decimals, contract)
