"""Virtual CAN segment shared by a bridge and its peripherals."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from canhook.core.frame import CANFrame


LOGGER = logging.getLogger(__name__)

FrameCallback = Callable[[CANFrame], None]


class BusNode(Protocol):
    name: str

    async def receive(self, frame: CANFrame) -> None: ...


@dataclass
class BusLoad:
    """Traffic counters for one bus session."""

    frames: int = 0
    payload_bytes: int = 0
    node_errors: int = 0
    by_manufacturer: Counter[int] = field(default_factory=Counter)

    def count(self, frame: CANFrame) -> None:
        self.frames += 1
        self.payload_bytes += len(frame.data)
        self.by_manufacturer[frame.id.manufacturer] += 1


class VirtualCANBus:
    """Delivers every transmitted frame to all attached nodes, then to observers.

    One delivery task drains a FIFO, so frames arrive everywhere in transmit
    order. A node that replies while handling a frame queues the reply behind
    whatever is already pending. Nothing is delivered until ``start()``.
    """

    def __init__(self, name: str = "can0") -> None:
        self.name = name
        self._nodes: list[BusNode] = []
        self._observers: list[FrameCallback] = []
        self._pending: Optional[asyncio.Queue[CANFrame]] = None
        self._delivery: Optional[asyncio.Task[None]] = None
        self.load = BusLoad()

    @property
    def running(self) -> bool:
        return self._delivery is not None and not self._delivery.done()

    def attach_node(self, node: BusNode) -> None:
        if node not in self._nodes:
            self._nodes.append(node)

    def detach_node(self, node: BusNode) -> None:
        if node in self._nodes:
            self._nodes.remove(node)

    def add_observer(self, callback: FrameCallback) -> None:
        """Add a callback that sees each frame after the nodes have."""
        if callback not in self._observers:
            self._observers.append(callback)

    def remove_observer(self, callback: FrameCallback) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    async def transmit(self, frame: CANFrame) -> None:
        if self._pending is None:
            LOGGER.debug("%s is down, dropping %s", self.name, frame.id)
            return
        self._pending.put_nowait(frame)

    async def drain(self) -> None:
        """Return once the queue is empty, replies triggered by queued frames included."""
        if self._pending is not None:
            await self._pending.join()

    async def _deliver(self, frame: CANFrame) -> None:
        self.load.count(frame)
        for node in list(self._nodes):
            try:
                await node.receive(frame)
            except Exception:
                self.load.node_errors += 1
                LOGGER.exception("%s: %s failed to handle %s", self.name, node.name, frame.id)
        for observer in list(self._observers):
            try:
                observer(frame)
            except Exception:
                LOGGER.exception("%s: observer failed on %s", self.name, frame.id)

    async def _run(self, pending: asyncio.Queue[CANFrame]) -> None:
        while True:
            frame = await pending.get()
            try:
                await self._deliver(frame)
            finally:
                pending.task_done()

    async def start(self) -> None:
        if self.running:
            return
        self.load = BusLoad()
        self._pending = asyncio.Queue()
        self._delivery = asyncio.create_task(self._run(self._pending))
        LOGGER.debug("%s up", self.name)

    async def stop(self) -> None:
        """Stop delivering; frames still queued are dropped."""
        self._pending = None
        if self._delivery:
            self._delivery.cancel()
            try:
                await self._delivery
            except asyncio.CancelledError:
                pass
            self._delivery = None
            LOGGER.debug("%s down after %d frames", self.name, self.load.frames)

    async def __aenter__(self) -> VirtualCANBus:
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()
