"""Host-side device handlers: the server end of every device protocol."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, ClassVar, Optional

from canhook.core.frame import DEVICE_ID_BROADCAST, CANFrame
from canhook.core.model import DeviceInfo
from canhook.devices.base import check_device_id, check_device_name
from canhook.devices.lasercan import RANGING_MODES, TIMING_BUDGETS
from canhook.errors import ProviderError
from canhook.host import grapple as g
from canhook.rpc.server import RpcHandler, rpc_method


LOGGER = logging.getLogger(__name__)

Transmit = Callable[[CANFrame], Awaitable[None]]

FIRMWARE_CHUNK_SIZE = 8
FIRMWARE_ACK_TIMEOUT = 1.0
CONFIG_REQUEST_TIMEOUT = 2.0
LASERCAN_VERSIONS = g.VersionRange("2024.2.0", "2024.3.0")
LASERCAN_FIRMWARE_URL = "https://github.com/GrappleRobotics/LaserCAN/releases"


class FrameSender:
    """Sends frames for one domain and matches config replies to requests."""

    def __init__(self, transmit: Transmit) -> None:
        self._transmit = transmit
        self._waiting: dict[int, list[asyncio.Future[CANFrame]]] = {}

    async def send(self, frame: CANFrame) -> None:
        await self._transmit(frame)

    async def request(self, frame: CANFrame, timeout: float = CONFIG_REQUEST_TIMEOUT) -> CANFrame:
        """Send a config request and wait for the device's reply."""
        key = g.ack_id(frame.id).to_raw()
        future: asyncio.Future[CANFrame] = asyncio.get_running_loop().create_future()
        self._waiting.setdefault(key, []).append(future)
        try:
            await self.send(frame)
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise ProviderError("Timed out waiting for response") from None
        finally:
            waiters = self._waiting.get(key)
            if waiters is not None and future in waiters:
                waiters.remove(future)
                if not waiters:
                    del self._waiting[key]

    def on_frame(self, frame: CANFrame) -> None:
        for future in self._waiting.pop(frame.id.to_raw(), []):
            if not future.done():
                future.set_result(frame)


def _check_reply(reply: CANFrame) -> None:
    code = reply.data[0] if reply.data else 0
    if code != 0:
        raise ProviderError(f"Device rejected the request (code {code})")


class HostDevice(RpcHandler):
    """A device the device manager hosts. ``info`` is replaced on every enumeration."""

    device_class: ClassVar[str] = ""

    def __init__(self, sender: FrameSender, info: DeviceInfo) -> None:
        self.sender = sender
        self.info = info

    def addressed_to_me(self, frame: CANFrame) -> bool:
        return frame.id.device_id in (DEVICE_ID_BROADCAST, self.info.device_id)

    async def handle(self, frame: CANFrame) -> None:
        """Observe one frame from the bus."""

    async def close(self) -> None:
        """Release background work when the device is dropped."""


class GenericDeviceHandler(RpcHandler):
    protocol_name = "GenericDevice"

    def __init__(self, owner: HostDevice) -> None:
        self._owner = owner

    def _frame(self, api_index: int, data: bytes) -> CANFrame:
        return g.grapple_frame(g.DEVICE_TYPE_BROADCAST, g.API_DEVICE_INFO, api_index, DEVICE_ID_BROADCAST, data)

    @rpc_method
    async def blink(self) -> None:
        serial = self._owner.info.require_serial()
        await self._owner.sender.send(self._frame(g.IDX_BLINK, g.serial_payload(serial)))

    @rpc_method
    async def set_id(self, id: int) -> None:
        serial = self._owner.info.require_serial()
        await self._owner.sender.send(self._frame(g.IDX_SET_ID, g.serial_payload(serial, check_device_id(id))))

    @rpc_method
    async def set_name(self, name: str) -> None:
        serial = self._owner.info.require_serial()
        for fragment in g.name_fragments(serial, check_device_name(name)):
            await self._owner.sender.send(self._frame(g.IDX_SET_NAME, fragment))

    @rpc_method
    async def commit_to_eeprom(self) -> None:
        serial = self._owner.info.require_serial()
        await self._owner.sender.send(self._frame(g.IDX_COMMIT, g.serial_payload(serial)))


class FirmwareHandler(RpcHandler):
    """Streams a firmware image to a device in 8-byte parts, one ack at a time."""

    protocol_name = "FirmwareUpgrade"

    def __init__(self, owner: HostDevice) -> None:
        self._owner = owner
        self._progress: Optional[float] = None
        self._ack = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None

    def _frame(self, api_index: int, device_id: int, data: bytes = b"") -> CANFrame:
        return g.grapple_frame(g.DEVICE_TYPE_FIRMWARE, g.API_FIRMWARE, api_index, device_id, data)

    @rpc_method
    async def start_field_upgrade(self) -> None:
        serial = self._owner.info.require_serial()
        await self._owner.sender.send(
            self._frame(g.IDX_START_FIELD_UPGRADE, DEVICE_ID_BROADCAST, g.serial_payload(serial))
        )

    @rpc_method
    async def progress(self) -> Optional[float]:
        return self._progress

    @rpc_method
    async def do_field_upgrade(self, data: list[int]) -> None:
        device_id = self._owner.info.require_device_id()
        if self._task is not None and not self._task.done():
            raise ProviderError("A firmware upload is already in progress")
        image = bytes(data)
        self._task = asyncio.create_task(self._upload(device_id, image))

    async def _upload(self, device_id: int, image: bytes) -> None:
        chunks = [image[i:i + FIRMWARE_CHUNK_SIZE] for i in range(0, len(image), FIRMWARE_CHUNK_SIZE)]
        self._progress = 0.0
        try:
            for i, chunk in enumerate(chunks):
                self._ack.clear()
                await self._owner.sender.send(
                    self._frame(g.IDX_UPDATE_PART, device_id, chunk.ljust(FIRMWARE_CHUNK_SIZE, b"\x00"))
                )
                await asyncio.wait_for(self._ack.wait(), FIRMWARE_ACK_TIMEOUT)
                self._progress = (i + 1) / len(chunks) * 100.0
            self._progress = 100.0
            await self._owner.sender.send(self._frame(g.IDX_UPDATE_DONE, device_id))
            LOGGER.info("Firmware upload of %d bytes to device %d complete", len(image), device_id)
        except asyncio.TimeoutError:
            LOGGER.warning("Firmware upload to device %d timed out waiting for an ack", device_id)
        finally:
            self._progress = None

    def on_frame(self, frame: CANFrame) -> None:
        if g.matches(frame.id, g.DEVICE_TYPE_FIRMWARE, g.API_FIRMWARE, g.IDX_UPDATE_PART_ACK):
            self._ack.set()

    async def close(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


class GrappleDevice(HostDevice):
    """Vendor device with the generic and firmware sub-protocols."""

    def __init__(self, sender: FrameSender, info: DeviceInfo) -> None:
        super().__init__(sender, info)
        self._generic = GenericDeviceHandler(self)
        self._firmware = FirmwareHandler(self)

    async def handle(self, frame: CANFrame) -> None:
        if self.addressed_to_me(frame):
            self._firmware.on_frame(frame)

    async def close(self) -> None:
        await self._firmware.close()

    @rpc_method
    async def generic(self, msg: Any) -> Any:
        return await self._generic.rpc_process(msg)

    @rpc_method
    async def firmware(self, msg: Any) -> Any:
        return await self._firmware.rpc_process(msg)


class BasicGrappleDevice(GrappleDevice):
    """Vendor device model with no device-specific protocol."""

    protocol_name = "GrappleDevice"

    def __init__(self, sender: FrameSender, info: DeviceInfo) -> None:
        super().__init__(sender, info)
        self.device_class = info.device_type.model or "Unknown"


class LaserCanDevice(GrappleDevice):
    protocol_name = "LaserCan"
    device_class = "LaserCAN"

    DEFAULT_ROI = {"x": 8, "y": 8, "w": 16, "h": 16}

    def __init__(self, sender: FrameSender, info: DeviceInfo) -> None:
        super().__init__(sender, info)
        self._measurement: Optional[dict[str, Any]] = None
        self._roi: dict[str, int] = dict(self.DEFAULT_ROI)

    async def handle(self, frame: CANFrame) -> None:
        await super().handle(frame)
        if frame.id.device_id != self.info.device_id:
            return
        if g.matches(frame.id, g.DEVICE_TYPE_DISTANCE_SENSOR, g.API_STATUS, g.IDX_MEASUREMENT):
            self._measurement = g.decode_measurement(frame.data)
        elif g.matches(frame.id, g.DEVICE_TYPE_DISTANCE_SENSOR, g.API_STATUS, g.IDX_ROI_REPORT):
            self._roi = g.decode_roi(frame.data)

    async def _configure(self, api_index: int, data: bytes) -> None:
        device_id = self.info.require_device_id()
        frame = g.grapple_frame(g.DEVICE_TYPE_DISTANCE_SENSOR, g.API_CONFIG, api_index, device_id, data)
        _check_reply(await self.sender.request(frame))

    @rpc_method
    async def status(self) -> dict[str, Any]:
        if self._measurement is None:
            return {"last_update": None}
        return {"last_update": {**self._measurement, "roi": dict(self._roi)}}

    @rpc_method
    async def set_range(self, mode: str) -> None:
        if mode not in RANGING_MODES:
            raise ValueError(f"Unknown ranging mode: {mode!r}")
        await self._configure(g.IDX_SET_RANGE, bytes([RANGING_MODES.index(mode)]))

    @rpc_method
    async def set_roi(self, roi: dict[str, int]) -> None:
        await self._configure(g.IDX_SET_ROI, g.encode_roi(roi["x"], roi["y"], roi["w"], roi["h"]))

    @rpc_method
    async def set_timing_budget(self, budget: str) -> None:
        if budget not in TIMING_BUDGETS:
            raise ValueError(f"Unknown timing budget: {budget!r}")
        await self._configure(g.IDX_SET_TIMING_BUDGET, bytes([g.BUDGET_MS[budget]]))


class MitocandriaDevice(GrappleDevice):
    protocol_name = "Mitocandria"
    device_class = "MitoCANdria"

    def __init__(self, sender: FrameSender, info: DeviceInfo) -> None:
        super().__init__(sender, info)
        self._channels: dict[int, dict[str, Any]] = {}

    async def handle(self, frame: CANFrame) -> None:
        await super().handle(frame)
        if frame.id.device_id != self.info.device_id:
            return
        if g.matches(frame.id, g.DEVICE_TYPE_POWER_DISTRIBUTION, g.API_STATUS, g.IDX_CHANNEL_STATUS):
            channel, status = g.decode_channel_status(frame.data)
            self._channels[channel] = status

    async def _configure(self, api_index: int, data: bytes) -> None:
        device_id = self.info.require_device_id()
        frame = g.grapple_frame(g.DEVICE_TYPE_POWER_DISTRIBUTION, g.API_CONFIG, api_index, device_id, data)
        _check_reply(await self.sender.request(frame))

    @rpc_method
    async def status(self) -> dict[str, Any]:
        if not self._channels:
            return {"last_update": None}
        return {"last_update": {"channels": [self._channels[c] for c in sorted(self._channels)]}}

    @rpc_method
    async def set_switchable_channel(self, channel: dict[str, Any]) -> None:
        await self._configure(
            g.IDX_SET_SWITCHABLE, bytes([int(channel["channel"]), 1 if channel["enabled"] else 0])
        )

    @rpc_method
    async def set_adjustable_channel(self, channel: dict[str, Any]) -> None:
        voltage = int(channel["voltage"])
        await self._configure(
            g.IDX_SET_ADJUSTABLE, bytes([int(channel["channel"])]) + voltage.to_bytes(2, "little")
        )


class OldVersionDevice(GrappleDevice):
    """A device whose firmware is outside the supported range."""

    protocol_name = "OldVersionDevice"
    device_class = "OldVersionDevice"

    def __init__(
        self,
        sender: FrameSender,
        info: DeviceInfo,
        supported: g.VersionRange = LASERCAN_VERSIONS,
        firmware_url: Optional[str] = LASERCAN_FIRMWARE_URL,
    ) -> None:
        super().__init__(sender, info)
        self._supported = supported
        self._firmware_url = firmware_url

    @rpc_method
    async def get_error(self) -> str:
        return (
            f"Firmware version {self.info.firmware_version} is not supported "
            f"(requires {self._supported}). Please update the device's firmware."
        )

    @rpc_method
    async def get_firmware_url(self) -> Optional[str]:
        return self._firmware_url


class DfuDevice(HostDevice):
    """A device waiting in its bootloader."""

    protocol_name = "DfuDevice"
    device_class = "FirmwareUpdate"

    def __init__(self, sender: FrameSender, info: DeviceInfo) -> None:
        super().__init__(sender, info)
        self._firmware = FirmwareHandler(self)

    async def handle(self, frame: CANFrame) -> None:
        if self.addressed_to_me(frame):
            self._firmware.on_frame(frame)

    async def close(self) -> None:
        await self._firmware.close()

    @rpc_method
    async def firmware(self, msg: Any) -> Any:
        return await self._firmware.rpc_process(msg)
