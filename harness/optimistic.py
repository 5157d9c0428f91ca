# harness/optimistic.py - apply now, confirm in the background, roll back on failure
import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from harness.errors import SimulatedFailure
from harness.metrics import MetricsAggregator
from harness.schemas import RequestOutcome, Task

logger = logging.getLogger(__name__)

Mutate = Callable[[Task], Task]
Confirm = Callable[[], Awaitable[Any]]


class MutationState(str, Enum):
    PENDING_APPLY = "pending_apply"
    APPLIED = "applied"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"
    DISCARDED = "discarded"   # settled after close(); state untouched


def toggle_completed(task: Task) -> Task:
    """The demo's mutation. Self-inverse, which is why re-toggling happens to
    work as a rollback for it; the coordinator restores snapshots instead."""
    return task.model_copy(update={"completed": not task.completed})


def _log_unexpected(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("confirmation crashed", exc_info=exc)


class Mutation:
    def __init__(self, task_id: int, snapshot: Task, seq: int = 0):
        self.task_id = task_id
        self.snapshot = snapshot
        self.seq = seq
        self.applied: Optional[Task] = None
        self.state = MutationState.PENDING_APPLY
        self.confirmation: Optional[asyncio.Task] = None

    async def wait(self) -> MutationState:
        if self.confirmation is not None:
            await self.confirmation
        return self.state

    def __repr__(self):
        return f"Mutation(task_id={self.task_id}, state={self.state.value})"


class OptimisticMutationCoordinator:
    """
    Owns a task list for one view session.

    apply_optimistic() changes the list synchronously and returns a Mutation
    whose confirmation runs as a background asyncio task. SimulatedFailure
    from confirm() restores the pre-mutation snapshot verbatim; it is never
    raised to the caller and never retried.

    When a later mutation of the same task is still pending, a failed one
    hands its snapshot to that successor instead of overwriting its result,
    so a chain of failures unwinds to the state before the first of them.
    """

    def __init__(self, tasks: Iterable[Task] = (),
                 metrics: Optional[MetricsAggregator] = None,
                 flow_id: str = "after"):
        self._tasks: Dict[int, Task] = {t.id: t for t in tasks}
        self.metrics = metrics
        self.flow_id = flow_id
        self.closed = False
        self._inflight: Dict[int, Mutation] = {}
        self._seq = 0

    def tasks(self) -> List[Task]:
        return list(self._tasks.values())

    def get(self, task_id: int) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise KeyError(f"Unknown task id: {task_id}")

    def apply_optimistic(self, task_id: int, mutate: Mutate, confirm: Confirm) -> Mutation:
        # mutate() may edit its argument in place; it only ever sees a copy
        snapshot = self.get(task_id).model_copy(deep=True)
        self._seq += 1
        mutation = Mutation(task_id, snapshot, self._seq)
        mutation.applied = self._tasks[task_id] = mutate(snapshot.model_copy(deep=True))
        mutation.state = MutationState.APPLIED
        mutation.confirmation = asyncio.ensure_future(self._confirm(mutation, confirm))
        mutation.confirmation.add_done_callback(_log_unexpected)
        self._inflight[mutation.seq] = mutation
        return mutation

    async def _confirm(self, mutation: Mutation, confirm: Confirm) -> None:
        start = time.perf_counter()
        try:
            await confirm()
        except SimulatedFailure as e:
            self._record(e)
            if self.closed:
                mutation.state = MutationState.DISCARDED
            else:
                self._rollback(mutation)
                mutation.state = MutationState.ROLLED_BACK
                logger.warning("confirm failed for task %d, rolled back: %s", mutation.task_id, e)
            return
        finally:
            self._inflight.pop(mutation.seq, None)
        self._record(RequestOutcome(elapsed_ms=(time.perf_counter() - start) * 1000.0))
        mutation.state = MutationState.DISCARDED if self.closed else MutationState.CONFIRMED

    def _rollback(self, mutation: Mutation) -> None:
        if self._tasks.get(mutation.task_id) is mutation.applied:
            self._tasks[mutation.task_id] = mutation.snapshot
            return
        successors = [m for m in self._inflight.values()
                      if m.task_id == mutation.task_id and m.seq > mutation.seq]
        if successors:
            successors[0].snapshot = mutation.snapshot

    def _record(self, outcome) -> None:
        if self.metrics is not None and not self.closed:
            self.metrics.record(self.flow_id, outcome)

    async def apply_blocking(self, task_id: int, mutate: Mutate, confirm: Confirm) -> Task:
        """Baseline path: wait for confirm(), then update. Failures propagate."""
        self.get(task_id)
        start = time.perf_counter()
        try:
            await confirm()
        except SimulatedFailure as e:
            self._record(e)
            raise
        self._record(RequestOutcome(elapsed_ms=(time.perf_counter() - start) * 1000.0))
        if self.closed:
            return self._tasks[task_id]
        updated = self._tasks[task_id] = mutate(self._tasks[task_id])
        return updated

    def pending(self) -> List[Mutation]:
        return list(self._inflight.values())

    async def settle(self) -> None:
        """Wait for every outstanding confirmation."""
        waiting = [m.confirmation for m in self._inflight.values() if m.confirmation is not None]
        if waiting:
            await asyncio.gather(*waiting, return_exceptions=True)

    def close(self) -> None:
        self.closed = True
        logger.info("optimistic coordinator closed with %d pending confirmations", len(self._inflight))
