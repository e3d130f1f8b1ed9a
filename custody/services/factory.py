"""
Service factory.

Builds the custody object graph from Settings.
"""

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from custody.config.constants import CHAIN_ETHEREUM, CHAIN_SOLANA, CHAIN_TRON
from custody.config.settings import Settings
from custody.services.chains.assets import erc20
from custody.services.chains.base import ChainAdapter
from custody.services.chains.ethereum_adapter import EthereumAdapter
from custody.services.chains.solana_adapter import SolanaAdapter
from custody.services.chains.tron_adapter import TronAdapter
from custody.services.chains.tron_client import TronGridClient
from custody.services.custody_service import CustodyService
from custody.services.deposit.poller import ChainScanState, DepositPoller
from custody.services.deposit.processed_tx_cache import ProcessedTxCache
from custody.services.deposit.processor import DepositProcessor
from custody.services.key_vault import KeyVault
from custody.services.ledger.store import LedgerStore, SqlLedgerStore
from custody.services.oracle import PriceOracle
from custody.services.sweep_engine import SweepEngine, default_sweep_policies
from custody.services.withdrawal.withdrawal_engine import WithdrawalEngine


def build_adapter(chain: str, settings: Settings) -> ChainAdapter:
    """
    Build and configure the adapter of one chain.

    Args:
        chain: Chain name
        settings: Application settings

    Returns:
        Adapter with its pool signer loaded

    Raises:
        ValueError: If the chain is unknown
    """
    if chain == CHAIN_SOLANA:
        adapter: ChainAdapter = SolanaAdapter(
            rpc_url=settings.solana_rpc_url,
            network=settings.solana_network,
            usdc_mint=settings.solana_usdc_mint,
            confirmation_poll_interval=settings.confirmation_poll_interval,
        )
        adapter.set_pool_signer(settings.solana_main_pool_private_key)
        return adapter

    if chain == CHAIN_ETHEREUM:
        tokens = []
        if settings.ethereum_usdt_contract:
            tokens.append(erc20("USDT", settings.ethereum_usdt_contract))
        if settings.ethereum_usdc_contract:
            tokens.append(erc20("USDC", settings.ethereum_usdc_contract))
        adapter = EthereumAdapter(
            rpc_url=settings.ethereum_rpc_url,
            network=settings.ethereum_network,
            tokens=tokens,
            confirmation_poll_interval=settings.confirmation_poll_interval,
        )
        adapter.set_pool_signer(settings.ethereum_main_pool_private_key)
        return adapter

    if chain == CHAIN_TRON:
        client = TronGridClient(settings.tron_fullnode_url, api_key=settings.tron_api_key)
        adapter = TronAdapter(
            client=client,
            network=settings.tron_network,
            usdt_contract=settings.tron_usdt_contract,
            pool_address=settings.tron_main_pool_address,
            confirmation_poll_interval=settings.confirmation_poll_interval,
        )
        adapter.set_pool_signer(settings.tron_main_pool_private_key)
        return adapter

    raise ValueError(f"Unknown chain: {chain}")


def build_custody_service(
    settings: Settings,
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    store: LedgerStore | None = None,
) -> CustodyService:
    """
    Build the custody service with every enabled chain.

    Args:
        settings: Application settings
        session_maker: Session factory for the SQL ledger store
        store: Ledger store, overrides session_maker

    Returns:
        Configured (not started) CustodyService
    """
    if store is None:
        if session_maker is None:
            raise ValueError("Either session_maker or store is required")
        store = SqlLedgerStore(session_maker)

    oracle = PriceOracle(
        url=settings.oracle_url,
        cache_ttl=settings.oracle_cache_ttl_seconds,
        timeout=settings.oracle_timeout_seconds,
    )
    processor = DepositProcessor(store, oracle, ProcessedTxCache(settings.processed_tx_cache_size))
    key_vault = KeyVault(settings.encryption_key, settings.environment)

    sweep_chains = settings.get_sweep_chains()
    adapters: dict[str, ChainAdapter] = {}
    pollers: dict[str, DepositPoller] = {}
    sweep_engines: dict[str, SweepEngine] = {}

    for chain in settings.get_enabled_chains():
        adapter = build_adapter(chain, settings)
        adapters[chain] = adapter

        credited_on_sweep: set[str] = set()
        if chain in sweep_chains:
            engine = SweepEngine(
                adapter=adapter,
                store=store,
                key_vault=key_vault,
                processor=processor,
                policies=default_sweep_policies(adapter),
                confirmation_timeout=settings.confirmation_timeout_seconds,
            )
            sweep_engines[chain] = engine
            credited_on_sweep = engine.credited_assets

        scan_assets = [a for a in adapter.assets if a.symbol not in credited_on_sweep]
        pollers[chain] = DepositPoller(
            adapter=adapter,
            processor=processor,
            store=store,
            state=ChainScanState(chain=chain),
            limit=_scan_limit(chain, settings),
            scan_assets=scan_assets,
            concurrency=settings.address_scan_concurrency,
            max_range=settings.ethereum_max_blocks_per_scan if chain == CHAIN_ETHEREUM else None,
            initial_lookback=(
                settings.ethereum_initial_lookback_blocks
                if chain == CHAIN_ETHEREUM
                else settings.solana_initial_lookback_slots
            ),
        )

    poll_intervals = {
        CHAIN_SOLANA: settings.solana_poll_interval,
        CHAIN_ETHEREUM: settings.ethereum_poll_interval,
        CHAIN_TRON: settings.tron_poll_interval,
    }

    logger.info(
        f"Custody service built: chains={list(adapters)}, sweep={list(sweep_engines)}"
    )
    return CustodyService(
        adapters=adapters,
        store=store,
        pollers=pollers,
        sweep_engines=sweep_engines,
        withdrawal_engine=WithdrawalEngine(adapters, store),
        oracle=oracle,
        poll_intervals=poll_intervals,
        sweep_interval=settings.sweep_check_interval,
    )


def _scan_limit(chain: str, settings: Settings) -> int:
    if chain == CHAIN_SOLANA:
        return settings.solana_signature_limit
    if chain == CHAIN_TRON:
        return settings.tron_transaction_limit
    return settings.ethereum_initial_lookback_blocks
