# simulator/flows.py
"""
Before/after scenarios replayed against the harness.

Each run_* coroutine drives a naive baseline and the optimized path over the
same workload and records into one MetricsAggregator under
"<flow>:before" and "<flow>:after". Return values carry flow-specific extras
(items loaded, calls saved, final task state) for the report.
"""

from __future__ import annotations

import asyncio
import math
import random
import time
from typing import Any, Dict, List, Optional

from harness.debounce import DebounceScheduler
from harness.engine import SimulatedRequestEngine
from harness.errors import SimulatedFailure
from harness.metrics import MetricsAggregator
from harness.optimistic import OptimisticMutationCoordinator, toggle_completed
from harness.paginated import PaginatedLoader, sliced_fetcher
from harness.schemas import FailureMode, RequestOutcome, RequestSpec
from harness.ttl_cache import TTLCache
from simulator.catalog import make_tasks, make_workflows, search_workflows, zipf_hover_order

FLOWS = ("caching", "prefetch", "debounce", "optimistic", "pagination")


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


# -------------------------------
# caching: repeated loads of one list
# -------------------------------
async def run_caching(metrics: MetricsAggregator,
                      clicks: int = 6,
                      delay_ms: int = 800,
                      ttl_ms: int = 300_000,
                      failure_mode: Optional[FailureMode] = None,
                      rng: Optional[random.Random] = None) -> Dict[str, Any]:
    spec = RequestSpec(payload=make_workflows(), delay_ms=delay_ms,
                       failure_mode=failure_mode or FailureMode.none())

    before = SimulatedRequestEngine(rng=rng, metrics=metrics, flow_id="caching:before")
    for _ in range(clicks):
        try:
            await before.fetch_data(spec)
        except SimulatedFailure:
            continue  # counted as an error by fetch_data

    engine = SimulatedRequestEngine(rng=rng)
    cache = TTLCache(metrics=metrics, flow_id="caching:after")

    async def fetch_workflows():
        return (await engine.execute(spec)).data

    for _ in range(clicks):
        try:
            await cache.get_or_fetch("workflows", ttl_ms, fetch_workflows)
        except SimulatedFailure:
            continue  # counted as an error by get_or_fetch
    return {"cached_keys": len(cache)}


# -------------------------------
# prefetch: hover warms the cache, click reads it
# -------------------------------
async def run_prefetch(metrics: MetricsAggregator,
                       clicks: int = 5,
                       delay_ms: int = 500,
                       hover_ms: int = 600,
                       ttl_ms: int = 300_000,
                       failure_mode: Optional[FailureMode] = None,
                       seed: Optional[int] = None,
                       rng: Optional[random.Random] = None) -> Dict[str, Any]:
    failure_mode = failure_mode or FailureMode.none()
    workflows = make_workflows(seed=seed)[:5]
    order = zipf_hover_order(len(workflows), clicks, seed=seed)

    before = SimulatedRequestEngine(rng=rng, metrics=metrics, flow_id="prefetch:before")
    for idx in order:
        try:
            await before.fetch_data(RequestSpec(payload=workflows[idx], delay_ms=delay_ms,
                                                failure_mode=failure_mode))
        except SimulatedFailure:
            continue

    engine = SimulatedRequestEngine(rng=rng)
    cache = TTLCache(metrics=metrics, flow_id="prefetch:after")
    for idx in order:
        wf = workflows[idx]

        async def fetch_detail(wf=wf):
            spec = RequestSpec(payload=wf, delay_ms=delay_ms, failure_mode=failure_mode)
            return (await engine.execute(spec)).data

        cache.prefetch(("workflow", wf.id), ttl_ms, fetch_detail)   # hover
        await asyncio.sleep(hover_ms / 1000.0)                        # pointer dwells
        try:
            await cache.get_or_fetch(("workflow", wf.id), ttl_ms, fetch_detail)  # click
        except SimulatedFailure:
            continue
    return {"distinct_items": len(set(order))}


# -------------------------------
# debounce: search-as-you-type
# -------------------------------
async def run_debounce(metrics: MetricsAggregator,
                       term: str = "workflow 1",
                       keystroke_ms: int = 50,
                       debounce_ms: int = 500,
                       delay_ms: int = 100,
                       failure_mode: Optional[FailureMode] = None,
                       rng: Optional[random.Random] = None) -> Dict[str, Any]:
    if not term:
        raise ValueError("term must not be empty")
    failure_mode = failure_mode or FailureMode.none()
    workflows = make_workflows()

    def search_spec(prefix: str) -> RequestSpec:
        return RequestSpec(payload=search_workflows(workflows, prefix), delay_ms=delay_ms,
                           failure_mode=failure_mode)

    before = SimulatedRequestEngine(rng=rng, metrics=metrics, flow_id="debounce:before")
    inflight = []
    for i in range(1, len(term) + 1):
        inflight.append(asyncio.ensure_future(before.fetch_data(search_spec(term[:i]))))
        await asyncio.sleep(keystroke_ms / 1000.0)
    await asyncio.gather(*inflight, return_exceptions=True)   # errors recorded by fetch_data

    after = SimulatedRequestEngine(rng=rng, metrics=metrics, flow_id="debounce:after")
    scheduler = DebounceScheduler()
    done = asyncio.Event()
    results: List[Any] = []

    async def search(prefix: str):
        try:
            outcome = await after.fetch_data(search_spec(prefix))
            results[:] = outcome.data
        except SimulatedFailure:
            results.clear()
        finally:
            if prefix == term:
                done.set()

    try:
        for i in range(1, len(term) + 1):
            scheduler.schedule("search", debounce_ms, search, term[:i])
            await asyncio.sleep(keystroke_ms / 1000.0)
        await done.wait()
    finally:
        scheduler.close()
    return {"results": len(results), "saved_calls": scheduler.saved}


# -------------------------------
# optimistic: task toggles
# -------------------------------
async def run_optimistic(metrics: MetricsAggregator,
                         toggles: int = 4,
                         delay_ms: int = 800,
                         failure_mode: Optional[FailureMode] = None,
                         rng: Optional[random.Random] = None) -> Dict[str, Any]:
    """Records perceived latency: the time until the toggled state is visible."""
    failure_mode = failure_mode or FailureMode.none()
    engine = SimulatedRequestEngine(rng=rng)

    def confirm():
        return engine.execute(RequestSpec(delay_ms=delay_ms, failure_mode=failure_mode))

    blocking = OptimisticMutationCoordinator(make_tasks())
    for n in range(toggles):
        task_id = n % 2 + 1
        start = time.perf_counter()
        try:
            await blocking.apply_blocking(task_id, toggle_completed, confirm)
        except SimulatedFailure as e:
            metrics.record("optimistic:before", e)
            continue
        metrics.record("optimistic:before", RequestOutcome(elapsed_ms=_elapsed_ms(start)))

    optimistic = OptimisticMutationCoordinator(make_tasks(), metrics=metrics,
                                               flow_id="optimistic:confirm")
    for n in range(toggles):
        task_id = n % 2 + 1
        start = time.perf_counter()
        optimistic.apply_optimistic(task_id, toggle_completed, confirm)
        metrics.record("optimistic:after", RequestOutcome(elapsed_ms=_elapsed_ms(start)))
    await optimistic.settle()
    optimistic.close()
    return {
        "before_tasks": [t.model_dump() for t in blocking.tasks()],
        "after_tasks": [t.model_dump() for t in optimistic.tasks()],
    }


# -------------------------------
# pagination: whole list vs pages on scroll
# -------------------------------
async def run_pagination(metrics: MetricsAggregator,
                         total: int = 100,
                         page_size: int = 10,
                         scrolls: int = 3,
                         delay_ms: int = 300,
                         failure_mode: Optional[FailureMode] = None,
                         rng: Optional[random.Random] = None) -> Dict[str, Any]:
    """
    Baseline fetches the whole universe up front; its latency grows with the
    number of pages it replaces. The optimized view loads one page per scroll.
    """
    failure_mode = failure_mode or FailureMode.none()
    universe = make_workflows(total)
    pages = max(1, math.ceil(total / page_size))

    before = SimulatedRequestEngine(rng=rng, metrics=metrics, flow_id="pagination:before")
    try:
        await before.fetch_data(RequestSpec(payload=universe, delay_ms=delay_ms * pages,
                                            failure_mode=failure_mode))
    except SimulatedFailure:
        pass   # counted as an error by fetch_data

    engine = SimulatedRequestEngine(rng=rng)
    loader = PaginatedLoader(sliced_fetcher(engine, universe, delay_ms=delay_ms, failure_mode=failure_mode),
                             page_size=page_size, total=total,
                             metrics=metrics, flow_id="pagination:after")
    for _ in range(scrolls):
        try:
            await loader.load_next()
        except SimulatedFailure:
            continue   # cursor unchanged; the next scroll retries
    return {"items_loaded": len(loader.items), "exhausted": loader.cursor.exhausted}
