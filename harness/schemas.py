# harness/schemas.py - shapes of data moving through the harness (validation layer)
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, List, Literal

from pydantic import BaseModel, ConfigDict, Field


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class FailureMode(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["none", "always", "probability"] = "none"
    rate: float = Field(default=0.0, ge=0.0, le=1.0)

    @classmethod
    def none(cls) -> "FailureMode":
        return cls(kind="none")

    @classmethod
    def always(cls) -> "FailureMode":
        return cls(kind="always", rate=1.0)

    @classmethod
    def probability(cls, p: float) -> "FailureMode":
        return cls(kind="probability", rate=p)


class RequestSpec(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    payload: Any = None
    delay_ms: int = Field(default=0, ge=0)
    failure_mode: FailureMode = Field(default_factory=FailureMode.none)


class RequestOutcome(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    data: Any = None
    elapsed_ms: float = Field(default=0.0, ge=0.0)
    served_from_cache: bool = False
    timestamp: datetime = Field(default_factory=now_utc)


class CacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    value: Any = None
    stored_at: float          # clock seconds, same clock as the owning cache
    ttl_ms: int = Field(gt=0)

    def is_fresh(self, now: float) -> bool:
        return (now - self.stored_at) * 1000.0 < self.ttl_ms


class Task(BaseModel):
    id: int
    title: str
    completed: bool = False


class PageCursor(BaseModel):
    model_config = ConfigDict(frozen=True)

    page_index: int = Field(default=0, ge=0)
    page_size: int = Field(gt=0)
    exhausted: bool = False


class PageResult(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    items: List[Any] = Field(default_factory=list)   # the delta, not the accumulated list
    cursor: PageCursor


class MetricsSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    calls: int = Field(default=0, ge=0)
    total_time_ms: float = Field(default=0.0, ge=0.0)
    cache_hits: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)
    latencies_ms: List[float] = Field(default_factory=list)

    @property
    def avg_response_ms(self) -> float:
        return self.total_time_ms / self.calls if self.calls > 0 else 0.0

    @property
    def cache_hit_pct(self) -> float:
        return 100.0 * self.cache_hits / self.calls if self.calls > 0 else 0.0

    @property
    def error_pct(self) -> float:
        return 100.0 * self.errors / self.calls if self.calls > 0 else 0.0

    @property
    def p95_latency_ms(self) -> float:
        if not self.latencies_ms:
            return 0.0
        xs = sorted(self.latencies_ms)
        k = int(math.ceil(0.95 * len(xs))) - 1
        k = max(0, min(k, len(xs) - 1))
        return float(xs[k])
