"""Reputation cache for OnGuard.

Bounded in-memory cache used for phone/account reputation lookups:
- LRU eviction once `max_size` entries are held
- Per-entry TTL (expired entries are dropped on access)
- Request coalescing: concurrent misses for one key share a single fetch
- Thread-safe bookkeeping
"""

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

_MISSING = object()


class CacheEntry:
    """Represents a cached value with the time it was fetched."""

    __slots__ = ("value", "fetched_at")

    def __init__(self, value: Any, fetched_at: float):
        self.value = value
        self.fetched_at = fetched_at

    def is_expired(self, ttl_seconds: float, now: float) -> bool:
        """Check if this entry has outlived the TTL."""
        return now - self.fetched_at > ttl_seconds


class ReputationCache:
    """
    LRU + TTL cache shared by every concurrent analysis.

    Usage:
        cache = ReputationCache(max_size=100, ttl_seconds=900)

        record = await cache.get_or_fetch("01012345678", fetch_async_fn)

    `fetch_fn` failures propagate to every caller waiting on that key and
    leave the cache untouched, so the next lookup retries.
    """

    def __init__(
        self,
        max_size: int = 100,
        ttl_seconds: float = 15 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            max_size: Maximum number of live entries (LRU eviction beyond this)
            ttl_seconds: Lifetime of an entry after it was fetched
            clock: Monotonic time source (injectable for tests)
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock

        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._inflight: Dict[str, asyncio.Task] = {}
        self._lock = threading.RLock()

        self.hits = 0
        self.misses = 0
        self.fetches = 0
        self.evictions = 0

    def _lookup(self, key: str) -> Any:
        """Return the live value for key or _MISSING; caller holds the lock."""
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        if entry.is_expired(self.ttl_seconds, self._clock()):
            del self._entries[key]
            return _MISSING
        self._entries.move_to_end(key)
        return entry.value

    def get(self, key: str) -> Optional[Any]:
        """
        Get cached value if present and not expired.

        Returns:
            Cached value or None if not found/expired
        """
        with self._lock:
            value = self._lookup(key)
        return None if value is _MISSING else value

    def set(self, key: str, value: Any) -> None:
        """Store a value, evicting least-recently-used entries beyond max_size."""
        with self._lock:
            self._entries[key] = CacheEntry(value, self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug("Reputation cache evicted %s", evicted)

    def delete(self, key: str) -> None:
        """Delete cached value."""
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every entry (in-flight fetches still complete and repopulate)."""
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return self._lookup(key) is not _MISSING

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Get cached value or fetch and cache it.

        Concurrent calls for the same key await one shared fetch. The fetch
        runs as its own task, so a caller cancelling its wait does not abort
        the fetch other callers depend on.

        Args:
            key: Cache key
            fetch_fn: Async function producing the value on a miss

        Returns:
            Cached or freshly fetched value
        """
        with self._lock:
            value = self._lookup(key)
            if value is not _MISSING:
                self.hits += 1
                return value

            task = self._inflight.get(key)
            if task is None or task.done():
                self.misses += 1
                self.fetches += 1
                task = asyncio.ensure_future(self._fetch(key, fetch_fn))
                task.add_done_callback(_consume_exception)
                self._inflight[key] = task
            else:
                self.hits += 1

        return await asyncio.shield(task)

    async def _fetch(self, key: str, fetch_fn: Callable[[], Awaitable[Any]]) -> Any:
        try:
            value = await fetch_fn()
            self.set(key, value)
            return value
        finally:
            with self._lock:
                if self._inflight.get(key) is asyncio.current_task():
                    del self._inflight[key]

    async def close(self) -> None:
        """Cancel outstanding fetches and drop all entries."""
        with self._lock:
            tasks = list(self._inflight.values())
            self._inflight.clear()
            self._entries.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
                "inflight": len(self._inflight),
                "hits": self.hits,
                "misses": self.misses,
                "fetches": self.fetches,
                "evictions": self.evictions,
            }


def _consume_exception(task: asyncio.Task) -> None:
    # Mark fetch errors as retrieved when every waiter has gone away.
    if not task.cancelled():
        task.exception()


def create_reputation_cache(max_size: int = 100, ttl_seconds: int = 15 * 60) -> ReputationCache:
    """Create the process-wide phone/account reputation cache."""
    return ReputationCache(max_size=max_size, ttl_seconds=ttl_seconds)
