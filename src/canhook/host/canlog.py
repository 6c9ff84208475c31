"""Capture mailbox of a CAN bridge, served over the pass-through protocol."""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, ClassVar, Optional

from canhook.capture.types import Filter, MailboxItem, filter_from_wire
from canhook.core.frame import CANFrame, MessageId
from canhook.core.model import DeviceInfo
from canhook.host.decoder import FrameDecoder
from canhook.rpc.server import RpcHandler, rpc_method


LOGGER = logging.getLogger(__name__)

Transmit = Callable[[CANFrame], Awaitable[None]]


class CanLogSource(RpcHandler):
    """Bounded, sequence-numbered mailbox of frames seen on the bus.

    Sequence numbers start at 1 and only logged frames consume one. Frames
    are re-timed to milliseconds since the source was created, because frames
    sent by the host and frames sniffed from the bus carry unrelated clocks.
    """

    protocol_name = "CanBridge"
    device_class: ClassVar[str] = "CANBridge"

    def __init__(
        self,
        transmit: Transmit,
        info: DeviceInfo,
        decoder: Optional[FrameDecoder] = None,
        max_size: int = 512,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 2:
            raise ValueError(f"max_size must be >= 2, got {max_size}")
        self._transmit = transmit
        self.info = info
        self._decoder = decoder or FrameDecoder()
        self._max_size = max_size
        self._clock = clock
        self._epoch = clock()
        self._mailbox: deque[MailboxItem] = deque()
        self._seq = 0
        self._enabled = False
        self._filters: list[Filter] = []

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def filters(self) -> list[Filter]:
        return list(self._filters)

    def __len__(self) -> int:
        return len(self._mailbox)

    def on_frame(self, frame: CANFrame) -> Optional[MailboxItem]:
        """Log a frame seen on the bus, if logging is on and every filter accepts it."""
        if not self._enabled:
            return None
        decoded = self._decoder.decode(frame)
        for f in self._filters:
            if not f.accept(frame, decoded):
                return None

        self._seq += 1
        elapsed_ms = int((self._clock() - self._epoch) * 1000)
        item = MailboxItem(
            seq=self._seq,
            raw=CANFrame(id=frame.id, data=frame.data, timestamp=elapsed_ms),
            decoded=decoded,
        )
        while len(self._mailbox) >= self._max_size - 1:
            self._mailbox.popleft()
        self._mailbox.append(item)
        return item

    async def handle(self, frame: CANFrame) -> None:
        self.on_frame(frame)

    async def close(self) -> None:
        """Nothing runs in the background."""

    @rpc_method
    async def set_log_enabled(self, enabled: bool) -> None:
        self._enabled = bool(enabled)
        LOGGER.debug("CAN log %s", "enabled" if self._enabled else "disabled")

    @rpc_method
    async def clear(self) -> None:
        self._mailbox.clear()

    @rpc_method
    async def read_after(self, seq: int) -> list[dict[str, Any]]:
        return [item.to_dict() for item in self._mailbox if item.seq > seq]

    @rpc_method
    async def set_filters(self, filters: list[Any]) -> None:
        self._filters = [filter_from_wire(f) for f in filters]

    @rpc_method
    async def send_raw(self, id: dict[str, int], data: list[int]) -> None:
        await self._transmit(CANFrame(id=MessageId.from_dict(id), data=bytes(data)))
