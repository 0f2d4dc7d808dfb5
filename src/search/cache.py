"""Time-bounded caches shared by search components.

Reads of a fresh entry never take a lock. A stale or missing entry is
refreshed under that key's lock with a second freshness check, so
concurrent callers trigger exactly one load per key.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

K = TypeVar("K")
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """Async key/value cache with per-entry expiry.

    Example:
        cache: TTLCache[str, list[str]] = TTLCache(ttl=300)
        words = await cache.get_or_load("blacklist", load_blacklist)
    """

    def __init__(
        self,
        ttl: float,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl: Seconds an entry stays fresh. 0 disables caching.
            name: Name used in log events.
            clock: Monotonic time source (injectable for tests).
        """
        self.ttl = ttl
        self.name = name
        self._clock = clock
        self._entries: dict[K, tuple[float, V]] = {}
        self._locks: dict[K, asyncio.Lock] = {}

    def _fresh(self, key: K) -> tuple[bool, V | None]:
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        expires_at, value = entry
        if self._clock() >= expires_at:
            return False, None
        return True, value

    def get(self, key: K) -> V | None:
        """Return a fresh value or None. Never blocks."""
        _, value = self._fresh(key)
        return value

    def set(self, key: K, value: V) -> None:
        if self.ttl <= 0:
            return
        self._entries[key] = (self._clock() + self.ttl, value)

    def invalidate(self, key: K | None = None) -> None:
        """Drop one entry, or every entry when key is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    async def get_or_load(self, key: K, loader: Callable[[], Awaitable[V]]) -> V:
        """Return the cached value, loading it once if stale.

        Args:
            key: Cache key.
            loader: Coroutine factory producing the value on a miss.

        Returns:
            The cached or freshly loaded value.
        """
        hit, value = self._fresh(key)
        if hit:
            return value  # type: ignore[return-value]

        # One lock per key: loads of different keys run concurrently
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another task may have refreshed while we waited
            hit, value = self._fresh(key)
            if hit:
                return value  # type: ignore[return-value]

            logger.debug("cache_refresh", cache=self.name, key=str(key))
            loaded = await loader()
            self.set(key, loaded)
            return loaded

    def __len__(self) -> int:
        return len(self._entries)
