"""Pytest configuration and shared fixtures for all tests."""

import os
import sys
from pathlib import Path

# Minimal environment for Settings()
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("SWEEP_ENABLED_CHAINS", "tron")

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest

from custody.services.deposit.processed_tx_cache import ProcessedTxCache
from custody.services.deposit.processor import DepositProcessor
from tests.fakes import FakeChainAdapter, FakeOracle, InMemoryLedgerStore


@pytest.fixture
def store():
    """In-memory ledger store."""
    return InMemoryLedgerStore()


@pytest.fixture
def oracle():
    """Oracle with SOL=150, ETH=3000, TRX=0.1 USD."""
    return FakeOracle()


@pytest.fixture
def seen():
    """Processed transaction cache."""
    return ProcessedTxCache(max_size=1000)


@pytest.fixture
def processor(store, oracle, seen):
    """Deposit processor over the in-memory store."""
    return DepositProcessor(store, oracle, seen)


@pytest.fixture
def adapter():
    """Scripted Solana-like adapter with a pool signer."""
    return FakeChainAdapter()
