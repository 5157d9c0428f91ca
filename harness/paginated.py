# harness/paginated.py - cursor-based incremental loading
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from harness.engine import SimulatedRequestEngine
from harness.errors import SimulatedFailure
from harness.metrics import MetricsAggregator
from harness.schemas import FailureMode, PageCursor, PageResult, RequestOutcome, RequestSpec

logger = logging.getLogger(__name__)

PageFetcher = Callable[[int, int], Awaitable[Sequence[Any]]]


def sliced_fetcher(engine: SimulatedRequestEngine,
                   universe: Sequence[Any],
                   delay_ms: int = 0,
                   failure_mode: Optional[FailureMode] = None) -> PageFetcher:
    """Page n of universe is universe[n*size:(n+1)*size], served through the engine."""
    async def fetch_page(page_index: int, page_size: int) -> List[Any]:
        start = page_index * page_size
        spec = RequestSpec(
            payload=list(universe[start:start + page_size]),
            delay_ms=delay_ms,
            failure_mode=failure_mode or FailureMode.none(),
        )
        outcome = await engine.execute(spec)
        return outcome.data
    return fetch_page


class PaginatedLoader:
    """
    Pull-based pager. The view calls load_next() when its last item becomes
    visible; the loader knows nothing about viewports.

    - one page fetch at a time: load_next() while in flight is a no-op
    - pages append in cursor order; the cursor never rewinds (reset() starts over)
    - exhausted once `total` items are loaded or a page comes back short,
      whichever happens first
    - a failed fetch propagates and leaves the cursor where it was
    """

    def __init__(self, fetch_page: PageFetcher, page_size: int,
                 total: Optional[int] = None,
                 metrics: Optional[MetricsAggregator] = None,
                 flow_id: str = "after"):
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")
        self.fetch_page = fetch_page
        self.page_size = page_size
        self.total = total
        self.metrics = metrics
        self.flow_id = flow_id
        self.in_flight = False
        self._generation = 0
        self._items: List[Any] = []
        self._cursor = PageCursor(page_index=0, page_size=page_size, exhausted=(total == 0))

    @property
    def items(self) -> List[Any]:
        return list(self._items)

    @property
    def cursor(self) -> PageCursor:
        return self._cursor

    def _empty(self) -> PageResult:
        return PageResult(items=[], cursor=self._cursor)

    async def load_next(self) -> PageResult:
        if self.in_flight or self._cursor.exhausted:
            return self._empty()

        self.in_flight = True
        generation = self._generation
        cursor = self._cursor
        start = time.perf_counter()
        try:
            page = list(await self.fetch_page(cursor.page_index, cursor.page_size))
        except SimulatedFailure as e:
            if generation == self._generation and self.metrics is not None:
                self.metrics.record(self.flow_id, e)
            logger.debug("page %d failed, cursor unchanged", cursor.page_index)
            raise
        finally:
            if generation == self._generation:
                self.in_flight = False

        if generation != self._generation:
            # reset() happened while this page was in flight
            logger.debug("discarding late page %d", cursor.page_index)
            return self._empty()

        if self.metrics is not None:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            self.metrics.record(self.flow_id, RequestOutcome(data=len(page), elapsed_ms=elapsed_ms))

        self._items.extend(page)
        exhausted = len(page) < cursor.page_size or (
            self.total is not None and len(self._items) >= self.total)
        self._cursor = PageCursor(
            page_index=cursor.page_index + 1,
            page_size=cursor.page_size,
            exhausted=exhausted,
        )
        logger.debug("page %d loaded: %d items (%d total), exhausted=%s",
                     cursor.page_index, len(page), len(self._items), exhausted)
        return PageResult(items=page, cursor=self._cursor)

    def reset(self) -> None:
        self._generation += 1
        self.in_flight = False
        self._items = []
        self._cursor = PageCursor(page_index=0, page_size=self.page_size, exhausted=(self.total == 0))
        logger.info("paginated loader reset")
