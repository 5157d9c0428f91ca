"""Tests for the simulated request engine."""

from __future__ import annotations

import random

import pytest
from pydantic import ValidationError

from harness.engine import SimulatedRequestEngine
from harness.errors import SimulatedFailure
from harness.schemas import FailureMode, RequestSpec


@pytest.mark.asyncio
async def test_execute_returns_payload_after_delay(engine):
    spec = RequestSpec(payload=[1, 2, 3], delay_ms=20)
    outcome = await engine.execute(spec)

    assert outcome.data == [1, 2, 3]
    assert outcome.served_from_cache is False
    assert outcome.elapsed_ms >= 10.0
    assert outcome.timestamp is not None


@pytest.mark.asyncio
async def test_always_failure_raises_with_spec(engine):
    spec = RequestSpec(payload="x", delay_ms=0, failure_mode=FailureMode.always())
    with pytest.raises(SimulatedFailure) as ei:
        await engine.execute(spec)
    assert ei.value.spec is spec


@pytest.mark.asyncio
async def test_probability_bounds(engine):
    never = RequestSpec(payload=1, failure_mode=FailureMode.probability(0.0))
    always = RequestSpec(payload=1, failure_mode=FailureMode.probability(1.0))
    for _ in range(20):
        assert (await engine.execute(never)).data == 1
        with pytest.raises(SimulatedFailure):
            await engine.execute(always)


@pytest.mark.asyncio
async def test_seeded_engines_replay_same_failures():
    spec = RequestSpec(payload=1, failure_mode=FailureMode.probability(0.5))

    async def pattern(seed):
        eng = SimulatedRequestEngine(rng=random.Random(seed))
        out = []
        for _ in range(30):
            try:
                await eng.execute(spec)
                out.append(True)
            except SimulatedFailure:
                out.append(False)
        return out

    first = await pattern(7)
    assert first == await pattern(7)
    assert True in first and False in first


@pytest.mark.asyncio
async def test_fetch_data_records_calls_and_errors(metrics):
    eng = SimulatedRequestEngine(rng=random.Random(0), metrics=metrics, flow_id="before")
    await eng.fetch_data(RequestSpec(payload="ok", delay_ms=5))
    with pytest.raises(SimulatedFailure):
        await eng.fetch_data(RequestSpec(payload="ok", failure_mode=FailureMode.always()))

    snap = metrics.snapshot("before")
    assert snap.calls == 2
    assert snap.errors == 1
    assert snap.cache_hits == 0
    assert snap.total_time_ms > 0


def test_spec_validation():
    with pytest.raises(ValidationError):
        RequestSpec(payload=None, delay_ms=-1)
    with pytest.raises(ValidationError):
        FailureMode.probability(1.5)


def test_spec_is_immutable():
    spec = RequestSpec(payload=1, delay_ms=5)
    with pytest.raises(ValidationError):
        spec.delay_ms = 10
