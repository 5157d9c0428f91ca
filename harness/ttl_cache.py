# harness/ttl_cache.py - key -> value store with expiry and request coalescing
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Set

from harness.errors import SimulatedFailure
from harness.metrics import MetricsAggregator
from harness.schemas import CacheEntry, RequestOutcome

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]


def _consume_exception(task: "asyncio.Task") -> None:
    # marks a background failure as retrieved; awaiters still see it
    if not task.cancelled():
        task.exception()


class TTLCache:
    """
    In-memory cache in front of a slow fetcher.

    Expired entries are evicted lazily on access; there is no sweeper.
    At most one fetch per key is in flight: concurrent get_or_fetch calls on
    a missing key await the same pending fetch. Failures propagate to every
    waiter and nothing is stored (no stale fallback).
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic,
                 metrics: Optional[MetricsAggregator] = None,
                 flow_id: str = "after"):
        self.clock = clock
        self.metrics = metrics
        self.flow_id = flow_id
        self._entries: Dict[Hashable, CacheEntry] = {}
        self._pending: Dict[Hashable, asyncio.Task] = {}
        self._prefetches: Set[asyncio.Task] = set()
        self._generation = 0

    # -----------------
    # plain key/value
    # -----------------
    def _fresh_entry(self, key: Hashable, ttl_ms: Optional[int] = None) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        age_ms = (self.clock() - entry.stored_at) * 1000.0
        limit = entry.ttl_ms if ttl_ms is None else ttl_ms
        if age_ms < limit:
            return entry
        del self._entries[key]
        logger.debug("evicted expired key %r (age %.0fms)", key, age_ms)
        return None

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._fresh_entry(key)
        return default if entry is None else entry.value

    def set(self, key: Hashable, value: Any, ttl_ms: int) -> None:
        if ttl_ms <= 0:
            raise ValueError(f"ttl_ms must be positive, got {ttl_ms}")
        self._entries[key] = CacheEntry(value=value, stored_at=self.clock(), ttl_ms=ttl_ms)

    def invalidate(self, key: Hashable) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Drop every entry. Fetches still in flight resolve but are not stored."""
        self._entries.clear()
        self._pending.clear()
        self._generation += 1
        logger.info("cache cleared")

    def __contains__(self, key: Hashable) -> bool:
        return self._fresh_entry(key) is not None

    def __len__(self) -> int:
        return sum(1 for k in list(self._entries) if self._fresh_entry(k) is not None)

    # -----------------
    # fetch-through
    # -----------------
    async def _fill(self, key: Hashable, ttl_ms: int, fetcher: Fetcher) -> Any:
        generation = self._generation
        me = asyncio.current_task()
        try:
            value = await fetcher()
            if generation == self._generation:
                self._entries[key] = CacheEntry(value=value, stored_at=self.clock(), ttl_ms=ttl_ms)
            return value
        finally:
            if self._pending.get(key) is me:
                del self._pending[key]

    async def _lookup(self, key: Hashable, ttl_ms: int, fetcher: Fetcher) -> RequestOutcome:
        if ttl_ms <= 0:
            raise ValueError(f"ttl_ms must be positive, got {ttl_ms}")
        entry = self._fresh_entry(key, ttl_ms)
        if entry is not None:
            logger.debug("hit %r", key)
            return RequestOutcome(data=entry.value, elapsed_ms=0.0, served_from_cache=True)

        start = time.perf_counter()
        task = self._pending.get(key)
        if task is None:
            logger.debug("miss %r, fetching", key)
            task = asyncio.ensure_future(self._fill(key, ttl_ms, fetcher))
            task.add_done_callback(_consume_exception)
            self._pending[key] = task
        else:
            logger.debug("miss %r, joining in-flight fetch", key)
        # a cancelled caller must not cancel the fetch other waiters share
        value = await asyncio.shield(task)
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        return RequestOutcome(data=value, elapsed_ms=elapsed_ms, served_from_cache=False)

    async def get_or_fetch(self, key: Hashable, ttl_ms: int, fetcher: Fetcher) -> RequestOutcome:
        """
        Return the cached value for key when fresh (served_from_cache=True,
        elapsed 0), otherwise await fetcher(), store and return its value.
        """
        try:
            outcome = await self._lookup(key, ttl_ms, fetcher)
        except SimulatedFailure as e:
            if self.metrics is not None:
                self.metrics.record(self.flow_id, e)
            raise
        if self.metrics is not None:
            self.metrics.record(self.flow_id, outcome)
        return outcome

    async def _prefetch(self, key: Hashable, ttl_ms: int, fetcher: Fetcher) -> Optional[RequestOutcome]:
        try:
            return await self._lookup(key, ttl_ms, fetcher)
        except SimulatedFailure as e:
            logger.warning("prefetch of %r failed: %s", key, e)
            return None

    def _prefetch_done(self, task: asyncio.Task) -> None:
        self._prefetches.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("prefetch crashed", exc_info=task.exception())

    def prefetch(self, key: Hashable, ttl_ms: int, fetcher: Fetcher) -> asyncio.Task:
        """
        Warm key in the background (hover trigger). Not counted in metrics.
        A failed prefetch stores nothing; the next get_or_fetch retries.
        """
        task = asyncio.ensure_future(self._prefetch(key, ttl_ms, fetcher))
        self._prefetches.add(task)
        task.add_done_callback(self._prefetch_done)
        return task
