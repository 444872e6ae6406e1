"""Cancellable deferred calls and the debounced task built on them."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

# Default auto-save debounce in seconds
DEFAULT_AUTOSAVE_DELAY = 30.0


class ScheduledCall(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Runs an async callback once after a delay, unless cancelled first."""

    def call_later(
        self, delay: float, callback: Callable[[], Awaitable[None]]
    ) -> ScheduledCall: ...


class _TimerCall:
    def __init__(self) -> None:
        self.timer: asyncio.TimerHandle | None = None

    def cancel(self) -> None:
        # Only the timer: a callback already running is left to finish.
        if self.timer is not None:
            self.timer.cancel()


class AsyncioScheduler:
    """Scheduler backed by the running event loop."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    def call_later(self, delay: float, callback: Callable[[], Awaitable[None]]) -> ScheduledCall:
        loop = asyncio.get_running_loop()
        call = _TimerCall()

        def fire() -> None:
            task = loop.create_task(callback())  # type: ignore[arg-type]
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        call.timer = loop.call_later(delay, fire)
        return call

    async def drain(self) -> None:
        """Wait for callbacks that have already fired."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


class DebouncedTask:
    """A single timer that every :meth:`trigger` resets.

    *action* runs once, *delay* seconds after the last trigger, so a burst
    of triggers coalesces into one run.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        delay: float,
        action: Callable[[], Awaitable[None]],
    ) -> None:
        if delay < 0:
            msg = f"debounce delay must be >= 0, got {delay}"
            raise ValueError(msg)
        self.scheduler = scheduler
        self.delay = delay
        self._action = action
        self._call: ScheduledCall | None = None

    @property
    def pending(self) -> bool:
        return self._call is not None

    def trigger(self) -> None:
        """(Re)start the timer."""
        if self._call is not None:
            self._call.cancel()
        self._call = self.scheduler.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._call is not None:
            self._call.cancel()
            self._call = None

    async def flush(self) -> None:
        """Run the pending action now instead of waiting for the timer."""
        if self._call is None:
            return
        self.cancel()
        await self._action()

    async def _fire(self) -> None:
        self._call = None
        await self._action()
