"""Tests for TTLCache: expiry, coalescing, failure propagation, prefetch."""

from __future__ import annotations

import asyncio
import logging

import pytest

from harness.errors import SimulatedFailure
from harness.ttl_cache import TTLCache


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_second_call_within_ttl_is_cache_hit(clock, counting_fetcher):
    cache = TTLCache(clock=clock)
    fetch = counting_fetcher()

    first = await cache.get_or_fetch("k", 1000, fetch)
    clock.advance_ms(999)
    second = await cache.get_or_fetch("k", 1000, fetch)

    assert first.served_from_cache is False
    assert second.served_from_cache is True
    assert second.elapsed_ms == 0.0
    assert fetch.state["calls"] == 1


@pytest.mark.asyncio
async def test_refetches_after_ttl_elapses(clock, counting_fetcher):
    cache = TTLCache(clock=clock)
    fetch = counting_fetcher()

    await cache.get_or_fetch("k", 1000, fetch)
    clock.advance_ms(1000)
    again = await cache.get_or_fetch("k", 1000, fetch)

    assert again.served_from_cache is False
    assert again.data == {"call": 2}
    assert fetch.state["calls"] == 2


@pytest.mark.asyncio
async def test_repeated_loads_share_one_value_and_count_hits(clock, metrics, counting_fetcher):
    cache = TTLCache(clock=clock, metrics=metrics, flow_id="after")
    fetch = counting_fetcher()

    first = await cache.get_or_fetch("k", 300_000, fetch)
    rest = []
    for _ in range(5):
        clock.advance_ms(1000)
        rest.append(await cache.get_or_fetch("k", 300_000, fetch))

    assert all(r.data is first.data for r in rest)
    assert all(r.served_from_cache for r in rest)
    snap = metrics.snapshot("after")
    assert snap.calls == 6
    assert snap.cache_hits == 5
    assert snap.cache_hits <= snap.calls


def test_get_and_set_with_lazy_eviction(clock):
    cache = TTLCache(clock=clock)
    cache.set("a", 1, 100)

    assert cache.get("a") == 1
    assert "a" in cache
    assert len(cache) == 1

    clock.advance_ms(100)
    assert cache.get("a") is None
    assert cache.get("a", "absent") == "absent"
    assert "a" not in cache
    assert len(cache) == 0


def test_set_rejects_non_positive_ttl(clock):
    cache = TTLCache(clock=clock)
    with pytest.raises(ValueError):
        cache.set("a", 1, 0)


def test_invalidate(clock):
    cache = TTLCache(clock=clock)
    cache.set("a", 1, 100)
    assert cache.invalidate("a") is True
    assert cache.invalidate("a") is False
    assert cache.get("a") is None


# ---------------------------------------------------------------------------
# Coalescing
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_concurrent_misses_share_one_fetch(clock, counting_fetcher):
    cache = TTLCache(clock=clock)
    fetch = counting_fetcher(delay_s=0.02)

    results = await asyncio.gather(*(cache.get_or_fetch("k", 1000, fetch) for _ in range(3)))

    assert fetch.state["calls"] == 1
    assert all(r.data is results[0].data for r in results)
    assert all(not r.served_from_cache for r in results)


@pytest.mark.asyncio
async def test_different_keys_fetch_independently(clock, counting_fetcher):
    cache = TTLCache(clock=clock)
    fetch = counting_fetcher(delay_s=0.01)

    await asyncio.gather(cache.get_or_fetch("a", 1000, fetch), cache.get_or_fetch("b", 1000, fetch))
    assert fetch.state["calls"] == 2


# ---------------------------------------------------------------------------
# Failure propagation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_failure_propagates_and_stores_nothing(clock, metrics, counting_fetcher):
    cache = TTLCache(clock=clock, metrics=metrics, flow_id="after")
    fetch = counting_fetcher(fail_times=1)

    with pytest.raises(SimulatedFailure):
        await cache.get_or_fetch("k", 1000, fetch)
    assert "k" not in cache

    retry = await cache.get_or_fetch("k", 1000, fetch)
    assert retry.data == {"call": 2}
    assert metrics.snapshot("after").errors == 1


@pytest.mark.asyncio
async def test_coalesced_waiters_all_see_failure(clock, counting_fetcher):
    cache = TTLCache(clock=clock)
    fetch = counting_fetcher(delay_s=0.01, fail_times=1)

    results = await asyncio.gather(
        cache.get_or_fetch("k", 1000, fetch),
        cache.get_or_fetch("k", 1000, fetch),
        return_exceptions=True,
    )
    assert fetch.state["calls"] == 1
    assert all(isinstance(r, SimulatedFailure) for r in results)


@pytest.mark.asyncio
async def test_clear_discards_in_flight_result(clock, counting_fetcher):
    cache = TTLCache(clock=clock)
    fetch = counting_fetcher(delay_s=0.02)

    pending = asyncio.ensure_future(cache.get_or_fetch("k", 1000, fetch))
    await asyncio.sleep(0.005)
    cache.clear()
    outcome = await pending

    assert outcome.data == {"call": 1}
    assert "k" not in cache


# ---------------------------------------------------------------------------
# Prefetch
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_prefetch_warms_cache_without_counting(clock, metrics, counting_fetcher):
    cache = TTLCache(clock=clock, metrics=metrics, flow_id="after")
    fetch = counting_fetcher(delay_s=0.01)

    await cache.prefetch("k", 1000, fetch)
    click = await cache.get_or_fetch("k", 1000, fetch)

    assert click.served_from_cache is True
    assert fetch.state["calls"] == 1
    snap = metrics.snapshot("after")
    assert snap.calls == 1
    assert snap.cache_hits == 1


@pytest.mark.asyncio
async def test_click_during_prefetch_joins_it(clock, counting_fetcher):
    cache = TTLCache(clock=clock)
    fetch = counting_fetcher(delay_s=0.02)

    cache.prefetch("k", 1000, fetch)
    await asyncio.sleep(0)
    click = await cache.get_or_fetch("k", 1000, fetch)

    assert fetch.state["calls"] == 1
    assert click.served_from_cache is False


@pytest.mark.asyncio
async def test_failed_prefetch_is_logged_and_retried_later(clock, counting_fetcher, caplog):
    cache = TTLCache(clock=clock)
    fetch = counting_fetcher(fail_times=1)

    with caplog.at_level(logging.WARNING, logger="harness.ttl_cache"):
        result = await cache.prefetch("k", 1000, fetch)
    assert result is None
    assert "prefetch" in caplog.text
    assert "k" not in cache

    outcome = await cache.get_or_fetch("k", 1000, fetch)
    assert outcome.served_from_cache is False
    assert fetch.state["calls"] == 2
