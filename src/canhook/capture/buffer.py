"""Client-side mirror of a source's capture mailbox."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional, Protocol, Sequence

from canhook.capture.types import Filter, MailboxItem
from canhook.config import CaptureConfig
from canhook.errors import CanHookError, CaptureDisabledError, ErrorSink, report_error


LOGGER = logging.getLogger(__name__)

BatchCallback = Callable[[list[MailboxItem]], None]


class CaptureState(Enum):
    """Capture state."""

    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


class CaptureSource(Protocol):
    """The remote side of a capture: a sequence-numbered mailbox."""

    async def set_log_enabled(self, enabled: bool) -> None: ...

    async def clear(self) -> None: ...

    async def read_after(self, seq: int) -> list[MailboxItem]: ...

    async def set_filters(self, filters: Sequence[Filter]) -> None: ...


class CaptureBuffer:
    """Bounded, most-recent-first mirror of captured frames.

    While running, a poll task asks the source for everything after the
    highest sequence number seen so far (the cursor) and merges the answer.
    Source sequence numbers start at 1, so a cursor of 0 means nothing has
    been seen yet.
    """

    def __init__(
        self,
        source: CaptureSource,
        config: Optional[CaptureConfig] = None,
        error_sink: Optional[ErrorSink] = None,
    ) -> None:
        self._source = source
        self._config = config or CaptureConfig()
        self._error_sink = error_sink
        self._state = CaptureState.STOPPED
        self._history: list[MailboxItem] = []
        self._cursor = 0
        self._total_captured = 0
        self._filters: list[Filter] = []
        self._generation = 0
        self._task: Optional[asyncio.Task[None]] = None
        self._callbacks: list[BatchCallback] = []

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def cursor(self) -> int:
        """Highest sequence number merged so far."""
        return self._cursor

    @property
    def total_captured(self) -> int:
        """Number of frames merged since the last clear, including evicted ones."""
        return self._total_captured

    @property
    def history(self) -> list[MailboxItem]:
        """Captured items, most recent first."""
        return list(self._history)

    @property
    def filters(self) -> list[Filter]:
        return list(self._filters)

    @property
    def max_history(self) -> int:
        return self._config.max_history

    def visible(self) -> list[MailboxItem]:
        """The most recent items a view should show."""
        return self._history[: self._config.max_display]

    def add_callback(self, callback: BatchCallback) -> None:
        """Add a callback receiving each merged batch, oldest first."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: BatchCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def set_log_enabled(self, enabled: bool) -> None:
        """Switch capture on (RUNNING) or off (STOPPED) at the source."""
        if enabled:
            if not self._config.enabled:
                raise CaptureDisabledError("Capture is disabled in this configuration")
            await self._source.set_log_enabled(True)
            self._state = CaptureState.RUNNING
            self._ensure_task()
            LOGGER.info("Capture running from seq %d", self._cursor)
        else:
            self._state = CaptureState.STOPPED
            self._generation += 1
            await self._cancel_task()
            await self._source.set_log_enabled(False)
            LOGGER.info("Capture stopped at seq %d", self._cursor)

    def pause(self) -> None:
        """Stop merging without stopping the source; the cursor is kept."""
        if self._state == CaptureState.RUNNING:
            self._state = CaptureState.PAUSED

    def resume(self) -> None:
        if self._state == CaptureState.PAUSED:
            self._state = CaptureState.RUNNING

    async def clear(self) -> None:
        """Clear the source mailbox, then the mirror, totals and cursor together.

        If the source refuses, nothing local changes.
        """
        await self._source.clear()
        self._generation += 1
        self._history.clear()
        self._total_captured = 0
        self._cursor = 0

    async def set_filters(self, filters: Sequence[Filter]) -> None:
        """Replace the filters the source applies to newly captured frames."""
        await self._source.set_filters(filters)
        self._filters = list(filters)

    async def poll_once(self) -> int:
        """Fetch and merge one batch. Returns the number of items merged.

        A result that arrives after capture was stopped or cleared is dropped.
        """
        generation = self._generation
        items = await self._source.read_after(self._cursor)
        if generation != self._generation or self._state == CaptureState.STOPPED:
            LOGGER.debug("Discarding stale poll of %d items", len(items))
            return 0
        return self.merge(items)

    def merge(self, items: Sequence[MailboxItem]) -> int:
        """Merge a batch, keeping only items newer than the cursor."""
        fresh: list[MailboxItem] = []
        last = self._cursor
        for item in sorted(items, key=lambda i: i.seq):
            if item.seq > last:
                fresh.append(item)
                last = item.seq
        if not fresh:
            return 0

        self._history[:0] = reversed(fresh)
        del self._history[self._config.max_history:]
        self._total_captured += len(fresh)
        self._cursor = last

        for callback in self._callbacks:
            callback(fresh)
        return len(fresh)

    async def _poll_loop(self) -> None:
        while self._state != CaptureState.STOPPED:
            if self._state == CaptureState.RUNNING:
                try:
                    await self.poll_once()
                except CanHookError as exc:
                    report_error(LOGGER, self._error_sink, exc, "Capture poll failed")
            await asyncio.sleep(self._config.poll_interval)

    def _ensure_task(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._poll_loop())

    async def _cancel_task(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def close(self) -> None:
        """Stop polling locally; the source is left as it is."""
        self._state = CaptureState.STOPPED
        self._generation += 1
        await self._cancel_task()
