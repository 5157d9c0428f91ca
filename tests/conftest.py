"""Shared test fixtures for the request harness."""

from __future__ import annotations

import random

import pytest

from harness.engine import SimulatedRequestEngine
from harness.metrics import MetricsAggregator


class FakeClock:
    """Monotonic seconds that only move when a test says so."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metrics() -> MetricsAggregator:
    return MetricsAggregator()


@pytest.fixture
def engine() -> SimulatedRequestEngine:
    return SimulatedRequestEngine(rng=random.Random(1234))


@pytest.fixture
def counting_fetcher():
    """Factory for an async fetcher that counts calls and returns a fresh object each time."""

    def _make(delay_s: float = 0.0, fail_times: int = 0):
        import asyncio

        from harness.errors import SimulatedFailure

        state = {"calls": 0}

        async def fetch():
            state["calls"] += 1
            if delay_s:
                await asyncio.sleep(delay_s)
            if state["calls"] <= fail_times:
                raise SimulatedFailure("boom")
            return {"call": state["calls"]}

        fetch.state = state
        return fetch

    return _make
