"""
Processed transaction cache.

Bounded in-memory set of transaction ids already recorded in the ledger.
Only short-circuits store lookups; the unique index on deposits.tx_hash
remains the source of truth.
"""

import threading
from collections import OrderedDict


class ProcessedTxCache:
    """Thread-safe LRU set of transaction ids."""

    def __init__(self, max_size: int = 10_000) -> None:
        """
        Initialize cache.

        Args:
            max_size: Maximum number of ids kept
        """
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._items: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    def __contains__(self, tx_id: str) -> bool:
        with self._lock:
            if tx_id in self._items:
                self._items.move_to_end(tx_id)
                return True
            return False

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def add(self, tx_id: str) -> None:
        """Mark id as processed, evicting the least recently used."""
        with self._lock:
            self._items[tx_id] = None
            self._items.move_to_end(tx_id)
            while len(self._items) > self.max_size:
                self._items.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
