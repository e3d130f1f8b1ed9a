"""
Application settings.

Loads configuration from environment variables using pydantic-settings.
"""

from loguru import logger
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str
    database_echo: bool = False

    # Environment
    environment: str = "development"
    log_level: str = "INFO"
    log_file: str = "logs/custody.log"

    # Encryption key for deposit wallet private keys (Fernet)
    encryption_key: str | None = None

    # Redis (dramatiq broker)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str | None = None
    redis_db: int = 0

    # Health check server
    health_check_host: str = "0.0.0.0"
    health_check_port: int = Field(default=8081, gt=0, lt=65536)

    # Solana
    solana_rpc_url: str = "https://api.testnet.solana.com"
    solana_network: str = "testnet"
    solana_main_pool_private_key: str | None = None  # base64 64-byte secret key
    solana_usdc_mint: str = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
    solana_initial_lookback_slots: int = Field(default=1000, ge=1)

    # Ethereum
    ethereum_rpc_url: str = "https://ethereum-sepolia-rpc.publicnode.com"
    ethereum_network: str = "sepolia"
    ethereum_main_pool_private_key: str | None = None
    ethereum_usdt_contract: str | None = None
    ethereum_usdc_contract: str | None = None
    ethereum_initial_lookback_blocks: int = Field(default=100, ge=1)
    ethereum_max_blocks_per_scan: int = Field(
        default=1000,
        ge=1,
        description="Maximum block range requested in one deposit scan cycle"
    )

    # Tron
    tron_fullnode_url: str = "https://api.shasta.trongrid.io"
    tron_api_key: str | None = None
    tron_network: str = "shasta"
    tron_main_pool_address: str | None = None
    tron_main_pool_private_key: str | None = None
    tron_usdt_contract: str = "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"

    # Poll cadences (seconds)
    solana_poll_interval: float = Field(default=5.0, gt=0)
    ethereum_poll_interval: float = Field(default=5.0, gt=0)
    tron_poll_interval: float = Field(default=3.0, gt=0)
    sweep_check_interval: float = Field(default=60.0, gt=0)

    # Scanning
    solana_signature_limit: int = Field(default=10, ge=1, le=1000)
    tron_transaction_limit: int = Field(default=20, ge=1, le=200)
    address_scan_concurrency: int = Field(
        default=5,
        ge=1,
        description="Addresses scanned in parallel within one poll cycle"
    )
    processed_tx_cache_size: int = Field(default=10_000, ge=1)

    # Chains
    enabled_chains: str = "solana,ethereum,tron"  # Comma-separated list
    sweep_enabled_chains: str = "tron"  # Comma-separated list

    # Confirmation waits
    confirmation_timeout_seconds: float = Field(default=60.0, gt=0)
    confirmation_poll_interval: float = Field(default=3.0, gt=0)

    # Price oracle (CoinGecko simple/price)
    oracle_url: str = "https://api.coingecko.com/api/v3/simple/price"
    oracle_cache_ttl_seconds: float = Field(default=30.0, ge=0)
    oracle_timeout_seconds: float = Field(default=10.0, gt=0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode='after')
    def validate_encryption(self) -> 'Settings':
        """Validate encryption configuration in production."""
        if self.environment == 'production':
            if not self.encryption_key:
                raise ValueError(
                    "ENCRYPTION_KEY is required in production environment. "
                    "Deposit wallet keys are stored encrypted. "
                    "Generate a key with: python -c 'from cryptography.fernet import Fernet; "
                    "print(Fernet.generate_key().decode())'"
                )
        return self

    @model_validator(mode='after')
    def validate_pool_keys(self) -> 'Settings':
        """Warn about chains whose pool cannot sign withdrawals."""
        if self.environment == 'production':
            missing = [
                name
                for name, value in (
                    ("SOLANA_MAIN_POOL_PRIVATE_KEY", self.solana_main_pool_private_key),
                    ("ETHEREUM_MAIN_POOL_PRIVATE_KEY", self.ethereum_main_pool_private_key),
                    ("TRON_MAIN_POOL_PRIVATE_KEY", self.tron_main_pool_private_key),
                )
                if not value
            ]
            if missing:
                logger.warning(
                    f"Main pool keys not configured: {', '.join(missing)}. "
                    "Withdrawals and sweeps on these chains will fail."
                )
        return self

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL."""
        if not v.startswith((
            'postgresql://',
            'postgresql+asyncpg://',
            'sqlite+aiosqlite://',
        )):
            raise ValueError(
                'DATABASE_URL must start with postgresql+asyncpg:// '
                '(or sqlite+aiosqlite:// for local runs)'
            )
        if v.startswith('postgresql://'):
            return v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v

    @field_validator('ethereum_usdt_contract', 'ethereum_usdc_contract')
    @classmethod
    def validate_contract_address(cls, v: str | None) -> str | None:
        """Validate ERC-20 contract address."""
        if v is None or v == "":
            return None
        if not v.startswith('0x') or len(v) != 42:
            raise ValueError(
                f'Invalid contract address: {v}. '
                'Must start with 0x and be 42 characters long.'
            )
        try:
            int(v[2:], 16)
        except ValueError as exc:
            raise ValueError(f'Invalid contract address format: {v}') from exc
        return v

    def get_enabled_chains(self) -> list[str]:
        """Parse monitored chains from comma-separated string."""
        return _split_chains(self.enabled_chains)

    def get_sweep_chains(self) -> list[str]:
        """Parse sweep-enabled chains from comma-separated string."""
        return [
            chain for chain in _split_chains(self.sweep_enabled_chains)
            if chain in self.get_enabled_chains()
        ]


def _split_chains(value: str) -> list[str]:
    return [chain.strip().lower() for chain in value.split(",") if chain.strip()]


# Global settings instance
settings = Settings()
