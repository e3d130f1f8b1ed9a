"""
Application constants.

Centralized constants for chains, assets, fees and sweep policy.
"""

from decimal import Decimal

# ========================================================================
# CHAINS
# ========================================================================

CHAIN_SOLANA = "solana"
CHAIN_ETHEREUM = "ethereum"
CHAIN_TRON = "tron"

SUPPORTED_CHAINS = (CHAIN_SOLANA, CHAIN_ETHEREUM, CHAIN_TRON)

# ========================================================================
# ASSET DECIMALS
# ========================================================================

SOL_DECIMALS = 9  # lamports
ETH_DECIMALS = 18  # wei
TRX_DECIMALS = 6  # sun
USDC_SPL_DECIMALS = 6
USDT_TRC20_DECIMALS = 6
ERC20_STABLE_DECIMALS = 6

# Symbols priced 1:1 against USD without an oracle call
USD_STABLE_SYMBOLS = frozenset({"USD", "USDT", "USDC"})

# ========================================================================
# WITHDRAWAL FEES AND POOL RESERVES
# ========================================================================

# Fixed withdrawal fee per currency, retained by the pool
WITHDRAWAL_FEES: dict[str, Decimal] = {
    "SOL": Decimal("0.005"),
    "USDC": Decimal("1"),
    "ETH": Decimal("0.001"),
    "TRX": Decimal("1"),
    "USDT": Decimal("1"),
}

# Balance floor the main pool keeps after any withdrawal
MINIMUM_POOL_RESERVES: dict[str, Decimal] = {
    "SOL": Decimal("0.01"),
    "USDC": Decimal("1"),
    "ETH": Decimal("0.005"),
    "TRX": Decimal("10"),
    "USDT": Decimal("1"),
}

# Default chain for each withdrawable currency
CURRENCY_DEFAULT_CHAIN: dict[str, str] = {
    "SOL": CHAIN_SOLANA,
    "USDC": CHAIN_SOLANA,
    "ETH": CHAIN_ETHEREUM,
    "TRX": CHAIN_TRON,
    "USDT": CHAIN_TRON,
}

# ========================================================================
# SWEEP POLICY
# ========================================================================

# Tron
TRON_MIN_SWEEP_USDT = Decimal("10")
TRON_GAS_TOPUP_TRX = Decimal("2")  # 2_000_000 sun
TRON_MIN_GAS_TRX = Decimal("2")
TRON_MIN_SWEEP_TRX = Decimal("5")
TRON_TRX_SWEEP_FEE_BUFFER = Decimal("0.1")
TRON_TRC20_FEE_LIMIT_SUN = 100_000_000

# Solana
SOLANA_MIN_SWEEP_USDC = Decimal("10")
SOLANA_GAS_TOPUP_SOL = Decimal("0.01")
SOLANA_MIN_GAS_SOL = Decimal("0.005")
SOLANA_MIN_SWEEP_SOL = Decimal("0.1")
SOLANA_SOL_SWEEP_FEE_BUFFER = Decimal("0.000005")

# Ethereum
ETHEREUM_MIN_SWEEP_ETH = Decimal("0.01")
ETHEREUM_ETH_SWEEP_FEE_BUFFER = Decimal("0.001")
ETHEREUM_MIN_SWEEP_TOKEN = Decimal("10")
ETHEREUM_GAS_TOPUP_ETH = Decimal("0.002")
ETHEREUM_MIN_GAS_ETH = Decimal("0.001")

# ========================================================================
# ETHEREUM TRANSACTION CONSTANTS
# ========================================================================

ETH_TRANSFER_GAS = 21_000
ERC20_TRANSFER_GAS = 100_000
ETH_CONFIRMATION_THRESHOLD = 1

# keccak256("Transfer(address,address,uint256)")
ERC20_TRANSFER_TOPIC = (
    "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
)

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_to", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
]

# ========================================================================
# DEPOSIT RECORDS
# ========================================================================

DEPOSIT_STATUS_PENDING = "pending"
DEPOSIT_STATUS_CONFIRMED = "confirmed"
DEPOSIT_STATUS_FAILED = "failed"
DEPOSIT_TYPE_CRYPTO = "crypto"

# Scales of the money and USD rate columns
MONEY_DECIMALS = 18
RATE_DECIMALS = 8

TRANSACTION_TYPE_WITHDRAW = "withdraw"
TRANSACTION_TYPE_SWEEP = "sweep"
TRANSACTION_TYPE_GAS_TOPUP = "gas_topup"

# Journal status: withdrawals stay submitted; sweeps are pending until
# confirmed on chain and, where required, credited
TRANSACTION_STATUS_SUBMITTED = "submitted"
TRANSACTION_STATUS_PENDING = "pending"
TRANSACTION_STATUS_CONFIRMED = "confirmed"
TRANSACTION_STATUS_FAILED = "failed"

# Bounded block cache used by the Ethereum native-transfer scan
ETH_BLOCK_CACHE_SIZE = 256
