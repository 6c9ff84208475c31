"""Cancellable delayed execution of coroutine steps."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol


LOGGER = logging.getLogger(__name__)

Step = Callable[[], Awaitable[None]]


class ScheduledCall(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Runs a coroutine step after a delay, in seconds."""

    def call_later(self, delay: float, step: Step) -> ScheduledCall: ...


class AsyncioScheduler:
    """Scheduler backed by the running event loop's timers.

    Cancelling a returned handle prevents a step that has not fired yet; a
    step that is already running completes unless :meth:`close` is called.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task[None]] = set()

    def call_later(self, delay: float, step: Step) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), self._spawn, step)

    def _spawn(self, step: Step) -> None:
        task = asyncio.ensure_future(step())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close(self) -> None:
        """Cancel steps that are still running."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
