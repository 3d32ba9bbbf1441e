"""TTL cache for schema snapshots and generation contexts.

The cache is an explicit object handed to every component that reads
through it; nothing caches at module level. Writers invalidate
synchronously before returning, so a reader that bypasses nothing still
never sees a snapshot older than the last completed mutation.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any

from tabletalk.core.types import CacheStats


class SchemaCache:
    """Thread-safe key/value cache with per-entry expiry.

    Example:
        >>> cache = SchemaCache(ttl=60)
        >>> cache.set("schema:abc", snapshot)
        >>> cache.get("schema:abc")            # hit
        >>> cache.get("schema:abc", bypass=True)  # forced miss
    """

    def __init__(self, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize the cache.

        Args:
            ttl: Seconds an entry stays valid
            clock: Monotonic time source (injectable for tests)
        """
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: str, bypass: bool = False) -> Any | None:
        """Return the cached value, or None on miss, expiry or bypass."""
        with self._lock:
            if bypass:
                self._misses += 1
                return None
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self._ttl, value)

    def get_or_load(self, key: str, loader: Callable[[], Any], bypass: bool = False) -> Any:
        """Return the cached value, loading and storing it on miss."""
        value = self.get(key, bypass=bypass)
        if value is None:
            value = loader()
            self.set(key, value)
        return value

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with prefix.

        Returns:
            Number of entries removed
        """
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        """Return hit/miss counters and current size."""
        with self._lock:
            return CacheStats(
                hits=self._hits, misses=self._misses, size=len(self._entries), ttl=self._ttl
            )
