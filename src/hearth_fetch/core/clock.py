"""Clock abstraction and owned, cancellable scheduled callbacks.

Every timer in the library (idle close, clearance renewal, background
retries, rate-limit pauses) goes through a Clock so tests can drive time
by hand instead of sleeping.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class Clock(abc.ABC):
    """Source of time and of suspensions."""

    @abc.abstractmethod
    def time(self) -> float:
        """Wall-clock time as a Unix timestamp (cookie expiries use this)."""

    @abc.abstractmethod
    def monotonic(self) -> float:
        """Monotonic time in seconds, for deadlines and measurements."""

    @abc.abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for the given number of seconds."""

    def call_later(
        self,
        delay: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "scheduled",
    ) -> ScheduledTask:
        """Run an async callback after a delay, as an owned asyncio task.

        Args:
            delay: Seconds to wait before running the callback
            callback: Coroutine function to run
            name: Name used for the task and in log messages

        Returns:
            ScheduledTask handle the caller owns and must cancel
        """
        return ScheduledTask(self, delay, callback, name)


class SystemClock(Clock):
    """Clock backed by the real time and asyncio.sleep."""

    def time(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class ScheduledTask:
    """Handle for a delayed callback running in its own asyncio task."""

    def __init__(
        self,
        clock: Clock,
        delay: float,
        callback: Callable[[], Awaitable[None]],
        name: str,
    ) -> None:
        self.name = name
        self.when = clock.monotonic() + max(0.0, delay)
        self._fired = False
        self._task = asyncio.create_task(self._run(clock, delay, callback), name=name)

    async def _run(
        self,
        clock: Clock,
        delay: float,
        callback: Callable[[], Awaitable[None]],
    ) -> None:
        await clock.sleep(delay)
        self._fired = True
        try:
            await callback()
        except Exception:
            logger.exception("Scheduled callback %s failed", self.name)

    @property
    def pending(self) -> bool:
        """True while the delay has not elapsed and the task was not cancelled."""
        return not self._fired and not self._task.done()

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        """Cancel the task unless it already finished or is the caller itself."""
        if self._task.done() or self._task is asyncio.current_task():
            return
        self._task.cancel()

    async def wait(self) -> None:
        """Wait for the task to finish, treating cancellation as finished."""
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
