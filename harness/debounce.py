# harness/debounce.py - fire once per quiet period, per key
import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, Hashable, Optional, Set

logger = logging.getLogger(__name__)


class DebounceScheduler:
    """
    schedule(key, delay_ms, action, *args) replaces any timer still pending
    under key; the action runs only after delay_ms with no newer schedule
    for that key, with the arguments of the last call.

    Timers are loop.call_later handles. close() cancels all of them, plus
    any coroutine actions still running, so nothing outlives the owner.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._timers: Dict[Hashable, asyncio.TimerHandle] = {}
        self._running: Set[asyncio.Task] = set()
        self.scheduled = 0
        self.fired = 0
        self.cancelled = 0
        self.closed = False

    @property
    def saved(self) -> int:
        """Triggers that never turned into an action call."""
        return self.scheduled - self.fired - len(self._timers)

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def schedule(self, key: Hashable, delay_ms: int, action: Callable[..., Any], *args, **kwargs) -> None:
        if self.closed:
            raise RuntimeError("DebounceScheduler is closed")
        if delay_ms < 0:
            raise ValueError(f"delay_ms must be >= 0, got {delay_ms}")
        prev = self._timers.pop(key, None)
        if prev is not None:
            prev.cancel()
        self.scheduled += 1
        self._timers[key] = self._get_loop().call_later(
            delay_ms / 1000.0, self._fire, key, action, args, kwargs
        )

    def _fire(self, key: Hashable, action: Callable[..., Any], args: tuple, kwargs: dict) -> None:
        self._timers.pop(key, None)
        self.fired += 1
        logger.debug("debounce fired for %r", key)
        result = action(*args, **kwargs)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._running.add(task)
            task.add_done_callback(self._action_done)

    def _action_done(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("debounced action failed", exc_info=exc)

    def cancel(self, key: Hashable) -> bool:
        handle = self._timers.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        self.cancelled += 1
        return True

    def pending(self, key: Hashable) -> bool:
        return key in self._timers

    def close(self) -> None:
        for key in list(self._timers):
            self.cancel(key)
        for task in list(self._running):
            task.cancel()
        self.closed = True
        logger.info("debounce scheduler closed")
