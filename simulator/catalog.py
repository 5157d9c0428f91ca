# simulator/catalog.py - in-memory item universe the simulated backend serves
from datetime import datetime, timedelta, timezone
from typing import List, Literal, Optional

import numpy as np
from pydantic import BaseModel

from harness.schemas import Task

STATUSES = ("active", "paused", "completed")


class Workflow(BaseModel):
    id: int
    name: str
    status: Literal["active", "paused", "completed"]
    created_at: datetime
    description: str
    event_count: int


def make_workflows(n: int = 50, seed: Optional[int] = None) -> List[Workflow]:
    """Workflows 1..n with random status and event count (10..109)."""
    rng = np.random.default_rng(seed)
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return [
        Workflow(
            id=i,
            name=f"Workflow {i}",
            status=STATUSES[int(rng.integers(0, len(STATUSES)))],
            created_at=start + timedelta(days=i - 1),
            description=f"Description of workflow {i}.",
            event_count=int(rng.integers(10, 110)),
        )
        for i in range(1, n + 1)
    ]


def make_tasks(n: int = 2) -> List[Task]:
    return [Task(id=i, title=f"Task {i}", completed=False) for i in range(1, n + 1)]


def search_workflows(workflows: List[Workflow], term: str) -> List[Workflow]:
    low = term.lower()
    return [w for w in workflows if low in w.name.lower()]


def zipf_hover_order(num_items: int, length: int, s: float = 1.07, seed: Optional[int] = None) -> List[int]:
    """Item indices (0-based) a user hovers/clicks; a few items dominate."""
    rng = np.random.default_rng(seed)
    ranks = np.arange(1, num_items + 1)
    weights = 1.0 / (ranks ** s)
    weights = weights / weights.sum()
    return [int(i) for i in rng.choice(num_items, size=length, p=weights)]
