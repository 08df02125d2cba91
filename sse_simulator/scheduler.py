"""
Scheduling of the engine's timed work.

Every timed unit of work (a generator tick, an expiry timer, a sweep) is a plain
synchronous callback handed to a :class:`Scheduler`. :class:`TaskGroupScheduler`
runs them on an anyio task group for the serving process; :class:`ManualScheduler`
keeps a virtual clock that tests advance explicitly.
"""
import heapq
import itertools
import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List, Optional, Tuple

import anyio
from anyio.abc import TaskGroup

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class Handle:
    """Cancellation handle for a scheduled callback."""

    def __init__(self, name: str, scope: Optional[anyio.CancelScope] = None) -> None:
        self.name = name
        self.cancelled = False
        self._scope = scope

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._scope is not None:
            self._scope.cancel()
        logger.debug(f"Cancelled scheduled job {self.name}")

    def __repr__(self) -> str:
        return f"Handle({self.name!r}, cancelled={self.cancelled})"


class Scheduler(ABC):
    @abstractmethod
    def now(self) -> float:
        """Current time in seconds on this scheduler's clock."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callback, name: str = "") -> Handle:
        """Run ``callback`` once after ``delay`` seconds."""

    @abstractmethod
    def call_every(self, interval: float, callback: Callback, name: str = "") -> Handle:
        """Run ``callback`` every ``interval`` seconds, first run after one interval."""


def _run_guarded(handle: Handle, callback: Callback) -> None:
    try:
        callback()
    except Exception:
        logger.exception(f"Scheduled job {handle.name} failed, cancelling it")
        handle.cancel()


class TaskGroupScheduler(Scheduler):
    """Runs scheduled callbacks as tasks of one anyio task group.

    Use :meth:`running` to open the task group for the lifetime of the serving process.
    """

    def __init__(self) -> None:
        self._task_group: Optional[TaskGroup] = None

    def now(self) -> float:
        return time.monotonic()

    @asynccontextmanager
    async def running(self) -> AsyncIterator["TaskGroupScheduler"]:
        async with anyio.create_task_group() as task_group:
            self._task_group = task_group
            try:
                yield self
            finally:
                self._task_group = None
                task_group.cancel_scope.cancel()

    def _new_handle(self, name: str) -> Handle:
        if self._task_group is None:
            raise RuntimeError("scheduler is not running")
        return Handle(name, anyio.CancelScope())

    def call_later(self, delay: float, callback: Callback, name: str = "") -> Handle:
        handle = self._new_handle(name or repr(callback))
        self._task_group.start_soon(self._run_once, handle, delay, callback)
        return handle

    def call_every(self, interval: float, callback: Callback, name: str = "") -> Handle:
        if interval <= 0:
            raise ValueError("interval must be greater than 0")
        handle = self._new_handle(name or repr(callback))
        self._task_group.start_soon(self._run_every, handle, interval, callback)
        return handle

    @staticmethod
    async def _run_once(handle: Handle, delay: float, callback: Callback) -> None:
        with handle._scope:
            await anyio.sleep(delay)
            if not handle.cancelled:
                _run_guarded(handle, callback)

    @staticmethod
    async def _run_every(handle: Handle, interval: float, callback: Callback) -> None:
        with handle._scope:
            while not handle.cancelled:
                await anyio.sleep(interval)
                if handle.cancelled:
                    break
                _run_guarded(handle, callback)


class ManualScheduler(Scheduler):
    """Virtual-time scheduler: nothing runs until :meth:`advance` is called."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._counter = itertools.count()
        self._queue: List[Tuple[float, int, Handle, Callback, Optional[float]]] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callback, name: str = "") -> Handle:
        handle = Handle(name or repr(callback))
        self._push(self._now + delay, handle, callback, None)
        return handle

    def call_every(self, interval: float, callback: Callback, name: str = "") -> Handle:
        if interval <= 0:
            raise ValueError("interval must be greater than 0")
        handle = Handle(name or repr(callback))
        self._push(self._now + interval, handle, callback, interval)
        return handle

    def _push(self, due, handle, callback, interval) -> None:
        heapq.heappush(self._queue, (due, next(self._counter), handle, callback, interval))

    @property
    def pending(self) -> int:
        return sum(1 for entry in self._queue if not entry[2].cancelled)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, running every callback that falls due on the way."""
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback, interval = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = due
            _run_guarded(handle, callback)
            if interval is not None and not handle.cancelled:
                self._push(due + interval, handle, callback, interval)
        self._now = target
