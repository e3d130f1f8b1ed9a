"""Unit tests for the processed transaction cache."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from custody.services.deposit.processed_tx_cache import ProcessedTxCache


class TestProcessedTxCache:
    """LRU set behaviour."""

    def test_add_and_contains(self):
        cache = ProcessedTxCache(max_size=10)
        cache.add("tx1")

        assert "tx1" in cache
        assert "tx2" not in cache
        assert len(cache) == 1

    def test_evicts_least_recently_used(self):
        """Oldest untouched id is evicted first."""
        cache = ProcessedTxCache(max_size=2)
        cache.add("a")
        cache.add("b")
        assert "a" in cache  # touch a
        cache.add("c")

        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache

    def test_clear(self):
        cache = ProcessedTxCache()
        cache.add("tx")
        cache.clear()
        assert len(cache) == 0

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            ProcessedTxCache(max_size=0)

    def test_concurrent_adds(self):
        """Membership stays consistent under threaded inserts."""
        cache = ProcessedTxCache(max_size=10_000)
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda i: cache.add(f"tx{i % 500}"), range(4000)))

        assert len(cache) == 500
