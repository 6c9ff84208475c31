"""Simulated vendor peripherals attached to a virtual bus."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Callable, Optional

from canhook.core.frame import DEVICE_ID_BROADCAST, CANFrame
from canhook.devices.lasercan import RANGING_MODES
from canhook.host import grapple as g
from canhook.host.bus import VirtualCANBus


LOGGER = logging.getLogger(__name__)


@dataclass
class PeriodicMessage:
    """A status message transmitted every ``period_ms``."""

    period_ms: float
    frames: Callable[[], list[CANFrame]]
    jitter_ms: float = 0.0
    enabled: bool = True


class SimulatedPeripheral:
    """A vendor device on the bus.

    It answers enumeration, identification and configuration broadcasts
    addressed to its serial number, and accepts firmware images in its
    bootloader.
    """

    model = "SpiderLan"

    def __init__(
        self,
        serial: int,
        device_id: int,
        firmware_version: str = "2024.2.0",
        name: str = "",
        upgraded_version: Optional[str] = None,
        ack_requests: bool = True,
    ) -> None:
        self.serial = serial
        self.device_id = device_id
        self.firmware_version = firmware_version
        self.upgraded_version = upgraded_version
        self.device_name = name
        self.ack_requests = ack_requests
        self.is_dfu = False
        self.blink_count = 0
        self.committed = False
        self.firmware_image = bytearray()
        self._bus: Optional[VirtualCANBus] = None
        self._messages: list[PeriodicMessage] = []
        self._names = g.NameAssembler()
        self._running = False
        self._tasks: list[asyncio.Task[None]] = []
        self.frames_sent = 0
        self.frames_received = 0

    @property
    def name(self) -> str:
        return f"{self.model}-{self.serial:08x}"

    @property
    def is_connected(self) -> bool:
        return self._bus is not None

    def attach(self, bus: VirtualCANBus) -> None:
        self._bus = bus
        bus.attach_node(self)

    def detach(self) -> None:
        if self._bus is not None:
            self._bus.detach_node(self)
            self._bus = None

    def add_periodic_message(self, message: PeriodicMessage) -> None:
        self._messages.append(message)

    async def transmit(self, frame: CANFrame) -> bool:
        if not self._bus:
            return False
        await self._bus.transmit(frame)
        self.frames_sent += 1
        return True

    async def _reply(self, device_type: int, api_class: int, api_index: int, data: bytes = b"") -> None:
        await self.transmit(g.grapple_frame(device_type, api_class, api_index, self.device_id, data))

    async def receive(self, frame: CANFrame) -> None:
        """Called by the bus for every frame."""
        if not g.is_grapple(frame.id):
            return
        self.frames_received += 1
        msg_id = frame.id

        if msg_id.device_type == g.DEVICE_TYPE_BROADCAST and msg_id.api_class == g.API_DEVICE_INFO:
            await self._on_device_info(msg_id.api_index, frame.data)
        elif msg_id.device_type == g.DEVICE_TYPE_FIRMWARE:
            await self._on_firmware(frame)
        elif msg_id.device_id == self.device_id and not self.is_dfu and msg_id.api_class == g.API_CONFIG:
            if msg_id.api_index & g.ACK_FLAG:
                return
            result = self.on_config(msg_id.device_type, msg_id.api_index, frame.data)
            if result is not None and self.ack_requests:
                await self._reply(msg_id.device_type, g.API_CONFIG, msg_id.api_index | g.ACK_FLAG, bytes([result]))

    async def _on_device_info(self, api_index: int, data: bytes) -> None:
        if api_index == g.IDX_ENUMERATE_REQUEST:
            await self.announce()
            return
        if g.payload_serial(data) != self.serial:
            return
        if api_index == g.IDX_BLINK:
            self.blink_count += 1
        elif api_index == g.IDX_SET_ID and len(data) >= 5:
            if data[4] < DEVICE_ID_BROADCAST:
                self.device_id = data[4]
        elif api_index == g.IDX_COMMIT:
            self.committed = True
        elif api_index == g.IDX_SET_NAME:
            named = self._names.feed(data)
            if named is not None:
                self.device_name = named[1]

    async def _on_firmware(self, frame: CANFrame) -> None:
        api_index = frame.id.api_index
        if api_index == g.IDX_START_FIELD_UPGRADE and g.payload_serial(frame.data) == self.serial:
            LOGGER.info("%s entering bootloader", self.name)
            self.is_dfu = True
            self.firmware_image.clear()
        elif frame.id.device_id == self.device_id and self.is_dfu:
            if api_index == g.IDX_UPDATE_PART:
                self.firmware_image.extend(frame.data)
                if self.ack_requests:
                    await self._reply(g.DEVICE_TYPE_FIRMWARE, g.API_FIRMWARE, g.IDX_UPDATE_PART_ACK)
            elif api_index == g.IDX_UPDATE_DONE:
                LOGGER.info("%s received %d bytes of firmware", self.name, len(self.firmware_image))
                self.is_dfu = False
                if self.upgraded_version:
                    self.firmware_version = self.upgraded_version

    async def announce(self) -> None:
        """Send an enumerate response followed by this device's name."""
        response = g.EnumerateResponse(
            serial=self.serial,
            model=self.model,
            version=self.firmware_version,
            is_dfu=self.is_dfu,
            is_dfu_in_progress=self.is_dfu and bool(self.firmware_image),
        )
        await self._reply(g.DEVICE_TYPE_BROADCAST, g.API_DEVICE_INFO, g.IDX_ENUMERATE_RESPONSE, response.encode())
        for fragment in g.name_fragments(self.serial, self.device_name):
            await self._reply(g.DEVICE_TYPE_BROADCAST, g.API_DEVICE_INFO, g.IDX_NAME_REPORT, fragment)

    def on_config(self, device_type: int, api_index: int, data: bytes) -> Optional[int]:
        """Apply a config request; returns the reply code, or None to stay silent."""
        return None

    async def _periodic_transmit(self, message: PeriodicMessage) -> None:
        while self._running and message.enabled:
            if not self.is_dfu:
                for frame in message.frames():
                    await self.transmit(frame)
            period = message.period_ms
            if message.jitter_ms > 0:
                period += random.uniform(-message.jitter_ms, message.jitter_ms)
            await asyncio.sleep(max(1, period) / 1000.0)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for message in self._messages:
            if message.enabled:
                self._tasks.append(asyncio.create_task(self._periodic_transmit(message)))

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

    async def __aenter__(self) -> SimulatedPeripheral:
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()


class SimulatedLaserCan(SimulatedPeripheral):
    """Distance sensor producing a slowly wandering measurement."""

    model = "LaserCan"

    def __init__(self, serial: int, device_id: int, period_ms: float = 50.0, **kwargs: object) -> None:
        super().__init__(serial, device_id, **kwargs)  # type: ignore[arg-type]
        self.mode = "Short"
        self.budget = "TB33ms"
        self.roi = {"x": 8, "y": 8, "w": 16, "h": 16}
        self.distance_mm = 250
        self.add_periodic_message(PeriodicMessage(period_ms=period_ms, frames=self.status_frames))

    def status_frames(self) -> list[CANFrame]:
        self.distance_mm = max(0, min(4000, self.distance_mm + random.randint(-5, 5)))
        lc, status = g.DEVICE_TYPE_DISTANCE_SENSOR, g.API_STATUS
        return [
            g.grapple_frame(
                lc, status, g.IDX_MEASUREMENT, self.device_id,
                g.encode_measurement(0, self.distance_mm, 120, self.mode, self.budget),
            ),
            g.grapple_frame(lc, status, g.IDX_ROI_REPORT, self.device_id, g.encode_roi(**self.roi)),
        ]

    def on_config(self, device_type: int, api_index: int, data: bytes) -> Optional[int]:
        if device_type != g.DEVICE_TYPE_DISTANCE_SENSOR:
            return None
        if api_index == g.IDX_SET_RANGE and len(data) >= 1 and data[0] < len(RANGING_MODES):
            self.mode = RANGING_MODES[data[0]]
            return 0
        if api_index == g.IDX_SET_ROI and len(data) >= 4:
            x, y, w, h = data[:4]
            if w < 4 or h < 4 or w % 2 or h % 2:
                return 1
            self.roi = {"x": x, "y": y, "w": w, "h": h}
            return 0
        if api_index == g.IDX_SET_TIMING_BUDGET and len(data) >= 1 and data[0] in g.BUDGETS_BY_MS:
            self.budget = g.BUDGETS_BY_MS[data[0]]
            return 0
        return 1


@dataclass
class PowerChannel:
    kind: str
    enabled: bool = True
    current: int = 0
    voltage_setpoint: int = 0

    @property
    def voltage(self) -> int:
        return self.voltage_setpoint if self.enabled else 0


def _default_channels() -> list[PowerChannel]:
    return [
        PowerChannel("NonSwitchable", voltage_setpoint=5000, current=350),
        PowerChannel("NonSwitchable", voltage_setpoint=5000, current=120),
        PowerChannel("Switchable", voltage_setpoint=5000, current=800),
        PowerChannel("Switchable", voltage_setpoint=5000, current=40),
        PowerChannel("Adjustable", voltage_setpoint=18000, current=1500),
    ]


class SimulatedMitocandria(SimulatedPeripheral):
    """Power distribution module with switchable and adjustable outputs."""

    model = "MitoCANdria"

    def __init__(self, serial: int, device_id: int, period_ms: float = 100.0, **kwargs: object) -> None:
        super().__init__(serial, device_id, **kwargs)  # type: ignore[arg-type]
        self.channels = _default_channels()
        self.add_periodic_message(PeriodicMessage(period_ms=period_ms, frames=self.status_frames))

    def status_frames(self) -> list[CANFrame]:
        return [
            g.grapple_frame(
                g.DEVICE_TYPE_POWER_DISTRIBUTION, g.API_STATUS, g.IDX_CHANNEL_STATUS, self.device_id,
                g.encode_channel_status(i, c.kind, c.enabled, c.current if c.enabled else 0, c.voltage, c.voltage_setpoint),
            )
            for i, c in enumerate(self.channels)
        ]

    def on_config(self, device_type: int, api_index: int, data: bytes) -> Optional[int]:
        if device_type != g.DEVICE_TYPE_POWER_DISTRIBUTION or len(data) < 2:
            return None
        channel = data[0]
        if channel >= len(self.channels):
            return 2
        target = self.channels[channel]
        if api_index == g.IDX_SET_SWITCHABLE:
            if target.kind == "NonSwitchable":
                return 3
            target.enabled = bool(data[1])
            return 0
        if api_index == g.IDX_SET_ADJUSTABLE and len(data) >= 3:
            if target.kind != "Adjustable":
                return 3
            target.voltage_setpoint = int.from_bytes(data[1:3], "little")
            return 0
        return 1


class SimulatedFlexiCan(SimulatedPeripheral):
    """Vendor device with no device-specific messages."""

    model = "FlexiCAN"
