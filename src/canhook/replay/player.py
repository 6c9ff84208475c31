"""Replay of imported frames with their original spacing."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence, Union

from canhook.config import ReplayConfig
from canhook.core.frame import MessageId
from canhook.errors import CanHookError, ErrorSink, ReplayDecodeError, report_error
from canhook.replay.importer import ReplayFrame, read_replay_csv
from canhook.replay.scheduler import AsyncioScheduler, ScheduledCall, Scheduler


LOGGER = logging.getLogger(__name__)

SendRaw = Callable[[MessageId, bytes], Awaitable[None]]
FrameCallback = Callable[[ReplayFrame, int], None]


class ReplayState(Enum):
    """Playback state."""

    IDLE = "idle"
    LOADED = "loaded"
    RUNNING = "running"
    PAUSED = "paused"


class ReplayPlayer:
    """Sends a loaded file through a pass-through device, one frame at a time.

    Each frame is transmitted only after the previous transmit completed, and
    the next step is scheduled ``(t[i+1] - t[i]) / speed_factor`` after that.
    A failed transmit pauses the player on the failed frame.
    """

    def __init__(
        self,
        send: SendRaw,
        scheduler: Optional[Scheduler] = None,
        config: Optional[ReplayConfig] = None,
        error_sink: Optional[ErrorSink] = None,
    ) -> None:
        self._send = send
        self._scheduler = scheduler or AsyncioScheduler()
        self._speed_factor = (config or ReplayConfig()).speed_factor
        self._error_sink = error_sink
        self._frames: list[ReplayFrame] = []
        self._name = ""
        self._state = ReplayState.IDLE
        self._index = 0
        self._pending: Optional[ScheduledCall] = None
        self._token = 0
        self._generation = 0
        self._in_flight = False
        self._settled = asyncio.Event()
        self._settled.set()
        self._callbacks: list[FrameCallback] = []

    @property
    def state(self) -> ReplayState:
        return self._state

    @property
    def name(self) -> str:
        return self._name

    @property
    def frames(self) -> list[ReplayFrame]:
        return list(self._frames)

    @property
    def index(self) -> int:
        """Index of the next frame to send."""
        return self._index

    @property
    def total(self) -> int:
        return len(self._frames)

    @property
    def remaining(self) -> int:
        return self.total - self._index

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def duration_ms(self) -> float:
        return self._frames[-1].time_ms if self._frames else 0.0

    @property
    def speed_factor(self) -> float:
        """Playback speed factor (1.0 = real-time)."""
        return self._speed_factor

    @speed_factor.setter
    def speed_factor(self, value: float) -> None:
        if value <= 0:
            raise ValueError("Speed factor must be positive")
        self._speed_factor = value

    def add_callback(self, callback: FrameCallback) -> None:
        """Add callback for each successfully sent frame."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: FrameCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def load(self, frames: Sequence[ReplayFrame], name: str = "") -> None:
        """Replace the loaded file and rewind to its start."""
        if not frames:
            raise ReplayDecodeError("rows", None, {}, "Replay file contains no frames")
        self._cancel_pending()
        self._generation += 1
        self._frames = list(frames)
        self._name = name
        self._index = 0
        self._set_state(ReplayState.LOADED)
        LOGGER.info("Loaded replay %r: %d frames over %.1f ms", name, self.total, self.duration_ms)

    def load_file(self, path: Union[Path, str]) -> None:
        """Decode and load a CSV file; on failure the current file stays loaded."""
        frames = read_replay_csv(path)
        self.load(frames, name=Path(path).name)

    def play(self) -> None:
        """Start or resume sending from the current index."""
        if self._state not in (ReplayState.LOADED, ReplayState.PAUSED) or self.remaining == 0:
            return
        self._set_state(ReplayState.RUNNING)
        self._schedule(0.0)

    def pause(self) -> None:
        if self._state != ReplayState.RUNNING:
            return
        self._cancel_pending()
        self._set_state(ReplayState.PAUSED)

    def rewind(self) -> None:
        """Cancel any pending step and go back to the first frame."""
        self._cancel_pending()
        self._generation += 1
        self._index = 0
        self._set_state(ReplayState.LOADED if self._frames else ReplayState.IDLE)

    async def wait_settled(self) -> None:
        """Wait until the player is no longer running."""
        await self._settled.wait()

    async def close(self) -> None:
        self._cancel_pending()
        self._generation += 1
        if self._state in (ReplayState.RUNNING, ReplayState.PAUSED):
            self._set_state(ReplayState.LOADED)
        close = getattr(self._scheduler, "close", None)
        if close is not None:
            await close()

    def _set_state(self, state: ReplayState) -> None:
        self._state = state
        if state == ReplayState.RUNNING:
            self._settled.clear()
        else:
            self._settled.set()

    def _schedule(self, delay_s: float) -> None:
        self._cancel_pending()
        token = self._token

        async def step() -> None:
            await self._step(token)

        self._pending = self._scheduler.call_later(delay_s, step)

    def _cancel_pending(self) -> None:
        self._token += 1
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    async def _step(self, token: int) -> None:
        if token != self._token or self._state != ReplayState.RUNNING or self._in_flight:
            return
        self._pending = None

        if self._index >= self.total:
            self._set_state(ReplayState.LOADED)
            return

        generation = self._generation
        index = self._index
        frame = self._frames[index]

        failed = False
        self._in_flight = True
        try:
            await self._send(frame.id, frame.data)
        except CanHookError as exc:
            failed = True
            report_error(LOGGER, self._error_sink, exc, f"Replay transmit of frame {index} failed")
        finally:
            self._in_flight = False

        if generation != self._generation:
            # Rewound or reloaded during the send; a play() issued meanwhile
            # could not start while this frame was in flight.
            if self._state == ReplayState.RUNNING:
                self._schedule(0.0)
            return

        if failed:
            if self._state == ReplayState.RUNNING:
                self._set_state(ReplayState.PAUSED)
            return

        self._index = index + 1
        for callback in self._callbacks:
            callback(frame, index)

        if self._index >= self.total:
            LOGGER.info("Replay %r finished", self._name)
            self._set_state(ReplayState.LOADED)
            return

        if self._state == ReplayState.RUNNING:
            dt_ms = self._frames[self._index].time_ms - frame.time_ms
            self._schedule(dt_ms / self._speed_factor / 1000.0)
