"""Injected clock, timers and background remote calls.

Every delayed effect in the inbox core (undo windows, chord deadlines,
optimistic-send safety timers) goes through a ``Scheduler`` so the business
logic never touches wall-clock time directly. Two implementations exist:

- ``AsyncioScheduler`` uses the running event loop's monotonic clock and
  ``loop.call_later``.
- ``ManualScheduler`` only moves when ``advance()`` is called, which makes
  every timing rule testable without real delays.

Remote calls are fire-and-forget from the caller's point of view: the
overlay is applied before the call is issued and the UI never waits on it.
``BackgroundCalls`` keeps track of those tasks so the host (and tests) can
``drain()`` them.

Example:
    >>> scheduler = ManualScheduler()
    >>> fired = []
    >>> timer = scheduler.call_later(0.3, lambda: fired.append("r"))
    >>> scheduler.advance(0.2)
    >>> fired
    []
    >>> scheduler.advance(0.1)
    >>> fired
    ['r']
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from collections.abc import Callable, Coroutine
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Timer(Protocol):
    """A scheduled callback that can be cancelled."""

    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    """Clock and timer source used by the inbox core."""

    def now(self) -> float:
        """Return the current monotonic time in seconds."""
        ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> Timer:
        """Run ``callback`` after ``delay`` seconds unless cancelled."""
        ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Initialize the scheduler.

        Args:
            loop: Event loop to schedule on. Defaults to the running loop at
                the time of each call.
        """
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is not None:
            return self._loop
        return asyncio.get_running_loop()

    def now(self) -> float:
        """Return the event loop's monotonic time."""
        return self._get_loop().time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> Timer:
        """Schedule ``callback`` on the event loop."""
        return self._get_loop().call_later(max(delay, 0.0), callback)


class ManualTimer:
    """Timer handle returned by ``ManualScheduler``."""

    def __init__(self, deadline: float, callback: Callable[[], None]) -> None:
        self.deadline = deadline
        self.callback = callback
        self._cancelled = False
        self._fired = False

    def cancel(self) -> None:
        """Prevent the callback from running. Safe to call repeatedly."""
        self._cancelled = True

    def cancelled(self) -> bool:
        """Return whether the timer was cancelled."""
        return self._cancelled

    @property
    def fired(self) -> bool:
        """Return whether the callback has run."""
        return self._fired


class ManualScheduler:
    """Deterministic scheduler whose time only moves on ``advance()``.

    Callbacks run in deadline order (ties in scheduling order). A callback
    may schedule further timers; those run within the same ``advance()``
    call if they fall due before the new time.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._queue: list[tuple[float, int, ManualTimer]] = []
        self._sequence = itertools.count()

    def now(self) -> float:
        """Return the simulated time."""
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        """Schedule ``callback`` at ``now() + delay``."""
        timer = ManualTimer(self._now + max(delay, 0.0), callback)
        heapq.heappush(self._queue, (timer.deadline, next(self._sequence), timer))
        return timer

    @property
    def pending_count(self) -> int:
        """Return the number of timers that are neither fired nor cancelled."""
        return sum(
            1 for _, _, timer in self._queue
            if not timer.cancelled() and not timer.fired
        )

    def advance(self, seconds: float) -> None:
        """Move time forward, running every callback that falls due.

        Args:
            seconds: How far to move the clock. Must not be negative.

        Raises:
            ValueError: If ``seconds`` is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot move time backwards ({seconds})")
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            deadline, _, timer = heapq.heappop(self._queue)
            if timer.cancelled():
                continue
            self._now = deadline
            timer._fired = True
            timer.callback()
        self._now = target


class BackgroundCalls:
    """Tracks fire-and-forget remote-call tasks.

    Tasks are started on the running loop and forgotten once done. Errors
    are expected to be handled inside the coroutine; anything that escapes
    is logged.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        name: str | None = None,
    ) -> asyncio.Task[Any]:
        """Start ``coro`` as a background task.

        Args:
            coro: The coroutine to run.
            name: Optional task name for debugging.

        Returns:
            The created task.
        """
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.exception(
                "Background call %s failed: %s",
                task.get_name(),
                exc,
                exc_info=exc,
            )

    @property
    def in_flight(self) -> int:
        """Return the number of unfinished tasks."""
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every task, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        """Cancel every unfinished task and wait for them to settle."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

