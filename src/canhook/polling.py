"""Independent periodic pollers for device views."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from canhook.errors import CanHookError, ErrorSink, report_error


LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class Poller(Generic[T]):
    """Calls ``fetch`` every ``interval`` seconds and keeps the latest result.

    Each poller owns its own task and state; results are last-write-wins. A
    failed fetch is reported and the loop carries on.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        interval: float,
        on_result: Optional[Callable[[T], None]] = None,
        error_sink: Optional[ErrorSink] = None,
        name: str = "poller",
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._fetch = fetch
        self.interval = interval
        self._on_result = on_result
        self._error_sink = error_sink
        self.name = name
        self.latest: Optional[T] = None
        self.polls = 0
        self.failures = 0
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def poll_once(self) -> Optional[T]:
        try:
            result = await self._fetch()
        except CanHookError as exc:
            self.failures += 1
            report_error(LOGGER, self._error_sink, exc, f"{self.name} poll failed")
            return None
        self.polls += 1
        self.latest = result
        if self._on_result is not None:
            self._on_result(result)
        return result

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def __aenter__(self) -> Poller[T]:
        self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()
