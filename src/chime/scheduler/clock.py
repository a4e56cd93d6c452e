"""
scheduler/clock.py — Clock and Cancellable Timer Primitive

Every strategy schedules through a TimerService rather than calling
asyncio directly. A TimerService hands back a TimerHandle; cancelling the
handle before it fires guarantees the callback never starts. Cancelling
after it fired does nothing: the callback is already a running task and
is allowed to finish (fire-and-forget).

    timers = AsyncioTimerService()
    handle = timers.call_later(30, some_coroutine_fn, name="chime:random")
    handle.cancel()     # True if it had not fired yet

The clock is injectable so tests can run the whole scheduler on virtual
time (see conftest.py).
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine, Optional

from chime.observability.logger import get_logger

log = get_logger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


# ─────────────────────────────────────────────────────────────────────────────
# Clock
# ─────────────────────────────────────────────────────────────────────────────

class Clock(ABC):
    """Wall-clock source. now() is local time, time() is epoch seconds."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    @abstractmethod
    def time(self) -> float:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now()

    def time(self) -> float:
        return time.time()


# ─────────────────────────────────────────────────────────────────────────────
# TimerHandle
# ─────────────────────────────────────────────────────────────────────────────

class HandleState(str, Enum):
    PENDING = "pending"
    FIRED = "fired"
    CANCELLED = "cancelled"


class TimerHandle:
    """One scheduled callback. Returned by TimerService.call_later()."""

    def __init__(self, name: str, due: float) -> None:
        self.name = name
        self.due = due                      # epoch seconds
        self.state = HandleState.PENDING
        self._cancel_fn: Optional[Callable[[], Any]] = None

    @property
    def pending(self) -> bool:
        return self.state == HandleState.PENDING

    def cancel(self) -> bool:
        """Cancel if still pending. Returns True if this call prevented the fire."""
        if self.state != HandleState.PENDING:
            return False
        self.state = HandleState.CANCELLED
        if self._cancel_fn is not None:
            self._cancel_fn()
        return True

    def mark_fired(self) -> bool:
        """Transition PENDING → FIRED. False if it was cancelled first."""
        if self.state != HandleState.PENDING:
            return False
        self.state = HandleState.FIRED
        return True

    def __repr__(self) -> str:
        return f"<TimerHandle {self.name} due={self.due:.1f} {self.state.value}>"


# ─────────────────────────────────────────────────────────────────────────────
# TimerService
# ─────────────────────────────────────────────────────────────────────────────

class TimerService(ABC):
    """
    Schedules coroutine callbacks after a delay on the running event loop.

    Fired callbacks and fire-and-forget work (spawn) run as asyncio Tasks.
    References are kept in _inflight until they finish so they are not
    garbage-collected mid-flight, and drain() can wait for them at shutdown.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock: Clock = clock or SystemClock()
        self._inflight: set[asyncio.Task] = set()

    @abstractmethod
    def call_later(self, delay: float, callback: TimerCallback, name: str = "timer") -> TimerHandle:
        ...

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """Run `coro` as a tracked background task. Errors are logged, not raised."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._inflight.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error(
                "timer.task_error",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
            )

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def drain(self) -> None:
        """Wait for every in-flight callback and spawned task to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)


class AsyncioTimerService(TimerService):
    """Production timer service backed by loop.call_later()."""

    def call_later(self, delay: float, callback: TimerCallback, name: str = "timer") -> TimerHandle:
        delay = max(float(delay), 0.0)
        handle = TimerHandle(name=name, due=self.clock.time() + delay)
        loop = asyncio.get_running_loop()
        loop_handle = loop.call_later(delay, self._fire, handle, callback)
        handle._cancel_fn = loop_handle.cancel
        return handle

    def _fire(self, handle: TimerHandle, callback: TimerCallback) -> None:
        if not handle.mark_fired():
            return
        self.spawn(callback(), name=handle.name)
