# harness/metrics.py - per-flow counters for before/after comparison
import logging
from typing import Dict, List, Union

from harness.schemas import MetricsSnapshot, RequestOutcome

logger = logging.getLogger(__name__)


class _FlowCounters:
    __slots__ = ("calls", "total_time_ms", "cache_hits", "errors", "latencies_ms")

    def __init__(self):
        self.calls = 0
        self.total_time_ms = 0.0
        self.cache_hits = 0
        self.errors = 0
        self.latencies_ms: List[float] = []


class MetricsAggregator:
    """
    Passive sink fed by every harness component.

    Each flow id ("before", "after", "caching:after", ...) has its own
    counters; flows are never merged. Counters only grow until reset(flow_id).
    A failed call counts as a call and as an error.
    """

    def __init__(self):
        self._flows: Dict[str, _FlowCounters] = {}

    def _counters(self, flow_id: str) -> _FlowCounters:
        c = self._flows.get(flow_id)
        if c is None:
            c = self._flows[flow_id] = _FlowCounters()
        return c

    def record(self, flow_id: str, outcome: Union[RequestOutcome, BaseException]) -> None:
        c = self._counters(flow_id)
        c.calls += 1
        if isinstance(outcome, BaseException):
            c.errors += 1
            return
        elapsed = float(outcome.elapsed_ms)
        if outcome.served_from_cache:
            c.cache_hits += 1
        c.total_time_ms += elapsed
        c.latencies_ms.append(elapsed)

    def snapshot(self, flow_id: str) -> MetricsSnapshot:
        c = self._flows.get(flow_id)
        if c is None:
            return MetricsSnapshot()
        return MetricsSnapshot(
            calls=c.calls,
            total_time_ms=c.total_time_ms,
            cache_hits=c.cache_hits,
            errors=c.errors,
            latencies_ms=list(c.latencies_ms),
        )

    def reset(self, flow_id: str) -> None:
        if self._flows.pop(flow_id, None) is not None:
            logger.info("metrics reset for flow %s", flow_id)

    def flows(self) -> List[str]:
        return list(self._flows)

    def compare(self, before_id: str, after_id: str) -> Dict[str, float]:
        """Improvement readouts of the optimized flow over the baseline."""
        before = self.snapshot(before_id)
        after = self.snapshot(after_id)
        reduction = 0.0
        if before.calls > 0 and after.calls > 0 and before.avg_response_ms > 0:
            reduction = 100.0 * (before.avg_response_ms - after.avg_response_ms) / before.avg_response_ms
        return {
            "before_avg_ms": round(before.avg_response_ms, 2),
            "after_avg_ms": round(after.avg_response_ms, 2),
            "response_time_reduction_pct": round(reduction, 2),
            "server_load_reduction_pct": round(after.cache_hit_pct, 2),
        }
