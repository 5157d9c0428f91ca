# harness/engine.py - one simulated network round-trip
import asyncio
import logging
import random
import time
from typing import Optional

from harness.errors import SimulatedFailure
from harness.metrics import MetricsAggregator
from harness.schemas import RequestOutcome, RequestSpec

logger = logging.getLogger(__name__)


class SimulatedRequestEngine:
    """
    Models a network call: suspend for spec.delay_ms, then return the payload
    or raise SimulatedFailure according to spec.failure_mode.

    Stateless across calls. The rng only decides probabilistic failures, so a
    seeded engine replays the same failure sequence.
    """

    def __init__(self, rng: Optional[random.Random] = None,
                 metrics: Optional[MetricsAggregator] = None,
                 flow_id: str = "before"):
        self.rng = rng or random.Random()
        self.metrics = metrics
        self.flow_id = flow_id

    def _should_fail(self, spec: RequestSpec) -> bool:
        mode = spec.failure_mode
        if mode.kind == "always":
            return True
        if mode.kind == "probability":
            return self.rng.random() < mode.rate
        return False

    async def execute(self, spec: RequestSpec) -> RequestOutcome:
        start = time.perf_counter()
        await asyncio.sleep(spec.delay_ms / 1000.0)
        if self._should_fail(spec):
            logger.debug("simulated failure after %dms", spec.delay_ms)
            raise SimulatedFailure(spec=spec)
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        return RequestOutcome(data=spec.payload, elapsed_ms=elapsed_ms, served_from_cache=False)

    async def fetch_data(self, spec: RequestSpec) -> RequestOutcome:
        """Baseline uncached path: execute and record into metrics (if attached)."""
        try:
            outcome = await self.execute(spec)
        except SimulatedFailure as e:
            if self.metrics is not None:
                self.metrics.record(self.flow_id, e)
            raise
        if self.metrics is not None:
            self.metrics.record(self.flow_id, outcome)
        return outcome
