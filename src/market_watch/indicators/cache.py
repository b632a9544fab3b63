"""Per-symbol indicator cache with short time-to-live entries."""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class IndicatorCache:
    """Thread-safe TTL cache keyed by symbol.

    Entries are stored as (value, stored_at) tuples. Expiry is checked on
    read; there is no background sweep.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        """Initialize cache.

        Args:
            ttl_seconds: Time-to-live for cached entries
            clock: Monotonic time source, injectable for tests
        """
        self.ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[object, float]] = {}
        self._lock = threading.Lock()

    def _is_valid(self, stored_at: float) -> bool:
        return (self._clock() - stored_at) < self.ttl

    def get(self, symbol: str) -> Optional[object]:
        """Return the cached value, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(symbol)
            if entry is None:
                return None
            value, stored_at = entry
            if not self._is_valid(stored_at):
                del self._entries[symbol]
                return None
            return value

    def put(self, symbol: str, value: object) -> None:
        with self._lock:
            self._entries[symbol] = (value, self._clock())

    def invalidate(self, symbol: str) -> bool:
        """Drop one symbol's entry. Returns True if something was removed."""
        with self._lock:
            removed = self._entries.pop(symbol, None) is not None
        if removed:
            logger.debug(f"Invalidated indicator cache for {symbol}")
        return removed

    def invalidate_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def clear_expired(self) -> int:
        """Remove expired entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            expired = [s for s, (_, ts) in self._entries.items() if not self._is_valid(ts)]
            for symbol in expired:
                del self._entries[symbol]
        if expired:
            logger.debug(f"Cleared {len(expired)} expired indicator cache entries")
        return len(expired)

    def status(self) -> dict:
        """Snapshot of cache occupancy."""
        with self._lock:
            total = len(self._entries)
            valid = sum(1 for _, ts in self._entries.values() if self._is_valid(ts))
        return {
            "total_entries": total,
            "valid_entries": valid,
            "expired_entries": total - valid,
            "ttl_seconds": self.ttl,
        }
