"""Device set of one provider: discovery, age-off and call dispatch."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, Protocol

from canhook.config import HostConfig
from canhook.core.frame import DEVICE_ID_BROADCAST, CANFrame
from canhook.core.model import DeviceId, DeviceInfo, DeviceListing, DeviceType, Domain
from canhook.errors import UnknownDeviceError
from canhook.host import grapple as g
from canhook.host.devices import (
    LASERCAN_VERSIONS,
    BasicGrappleDevice,
    DfuDevice,
    FrameSender,
    HostDevice,
    LaserCanDevice,
    MitocandriaDevice,
    OldVersionDevice,
    Transmit,
)
from canhook.rpc.server import rpc_method, RpcHandler


LOGGER = logging.getLogger(__name__)


class ManagedDevice(Protocol):
    device_class: str
    info: DeviceInfo

    async def rpc_process(self, request: Any) -> dict[str, Any]: ...

    async def handle(self, frame: CANFrame) -> None: ...

    async def close(self) -> None: ...


@dataclass
class DeviceEntry:
    device: ManagedDevice
    last_seen: float
    fixed: bool = False


def classify(info: DeviceInfo) -> type[HostDevice]:
    """Pick the handler for a discovered vendor device, gating on firmware version."""
    if info.is_dfu:
        return DfuDevice
    model = info.device_type.model
    if model == "LaserCan":
        if LASERCAN_VERSIONS.contains(info.firmware_version):
            return LaserCanDevice
        return OldVersionDevice
    if model == "MitoCANdria":
        return MitocandriaDevice
    return BasicGrappleDevice


class DeviceManager(RpcHandler):
    """Tracks the devices reachable in each domain and forwards calls to them."""

    protocol_name = "DeviceManager"

    def __init__(
        self,
        transmit: dict[Domain, Transmit],
        config: Optional[HostConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or HostConfig()
        self._clock = clock
        self._senders = {domain: FrameSender(t) for domain, t in transmit.items()}
        self._devices: dict[Domain, dict[DeviceId, DeviceEntry]] = {d: {} for d in transmit}
        self._names: dict[Domain, g.NameAssembler] = {d: g.NameAssembler() for d in transmit}

    @property
    def domains(self) -> list[Domain]:
        return list(self._devices)

    def add_device(self, domain: Domain, device_id: DeviceId, device: ManagedDevice) -> None:
        """Register a device that is always present, e.g. the bridge itself."""
        self._domain(domain)[device_id] = DeviceEntry(device, self._clock(), fixed=True)

    def get(self, domain: Domain, device_id: DeviceId) -> Optional[ManagedDevice]:
        entry = self._domain(domain).get(device_id)
        return entry.device if entry else None

    def _domain(self, domain: Domain) -> dict[DeviceId, DeviceEntry]:
        devices = self._devices.get(domain)
        if devices is None:
            raise UnknownDeviceError(f"No domain {domain!r}")
        return devices

    async def reset(self) -> None:
        """Forget every discovered device."""
        for devices in self._devices.values():
            for device_id, entry in list(devices.items()):
                if not entry.fixed:
                    await entry.device.close()
                    del devices[device_id]

    async def on_frame(self, domain: Domain, frame: CANFrame) -> None:
        self._senders[domain].on_frame(frame)

        if g.matches(frame.id, g.DEVICE_TYPE_BROADCAST, g.API_DEVICE_INFO, g.IDX_ENUMERATE_RESPONSE):
            try:
                response = g.EnumerateResponse.decode(frame.data)
            except (ValueError, KeyError) as exc:
                LOGGER.warning("Ignoring malformed enumerate response %r: %s", frame, exc)
            else:
                await self.on_enumerate_response(domain, frame.id.device_id, response)
        elif g.matches(frame.id, g.DEVICE_TYPE_BROADCAST, g.API_DEVICE_INFO, g.IDX_NAME_REPORT):
            named = self._names[domain].feed(frame.data)
            if named is not None:
                self._set_name(domain, *named)

        for entry in list(self._devices[domain].values()):
            try:
                await entry.device.handle(frame)
            except Exception as exc:
                LOGGER.warning("Error in message handler of %s: %s", entry.device.info.title(), exc)

    async def on_enumerate_response(self, domain: Domain, can_id: int, response: g.EnumerateResponse) -> None:
        devices = self._devices[domain]
        device_id = DeviceId.dfu(response.serial) if response.is_dfu else DeviceId.of_serial(response.serial)
        other_id = DeviceId.of_serial(response.serial) if response.is_dfu else DeviceId.dfu(response.serial)

        previous = devices.get(device_id) or devices.get(other_id)
        stale = devices.pop(other_id, None)
        if stale is not None:
            await stale.device.close()

        info = DeviceInfo(
            device_type=DeviceType.grapple(response.model),
            device_id=can_id,
            serial=response.serial,
            firmware_version=response.version,
            name=previous.device.info.name if previous else None,
            is_dfu=response.is_dfu,
            is_dfu_in_progress=response.is_dfu_in_progress,
        )

        now = self._clock()
        entry = devices.get(device_id)
        handler = classify(info)
        if entry is None or type(entry.device) is not handler:
            if entry is not None:
                await entry.device.close()
            LOGGER.info("Discovered %s as %s in %s", info.title(), handler.device_class or info.device_type.model, domain)
            devices[device_id] = DeviceEntry(handler(self._senders[domain], info), now)
        else:
            entry.device.info = info
            entry.last_seen = now

    def _set_name(self, domain: Domain, serial: int, name: str) -> None:
        for entry in self._devices[domain].values():
            if entry.device.info.serial == serial and not entry.fixed:
                entry.device.info = replace(entry.device.info, name=name)

    async def tick(self) -> None:
        """Ask every domain to enumerate, then drop devices not seen for a while."""
        for domain, sender in self._senders.items():
            await sender.send(
                g.grapple_frame(
                    g.DEVICE_TYPE_BROADCAST, g.API_DEVICE_INFO, g.IDX_ENUMERATE_REQUEST, DEVICE_ID_BROADCAST
                )
            )
        await self.age_off()

    async def age_off(self) -> None:
        now = self._clock()
        for domain, devices in self._devices.items():
            for device_id, entry in list(devices.items()):
                if not entry.fixed and now - entry.last_seen >= self._config.device_max_age:
                    LOGGER.info("Device %s in %s aged off", device_id, domain)
                    await entry.device.close()
                    del devices[device_id]

    def listing(self) -> dict[Domain, list[DeviceListing]]:
        return {
            domain: [
                DeviceListing(device_id, entry.device.info, entry.device.device_class)
                for device_id, entry in sorted(devices.items())
            ]
            for domain, devices in self._devices.items()
        }

    @rpc_method
    async def devices(self) -> dict[Domain, list[list[Any]]]:
        return {domain: [entry.to_wire() for entry in entries] for domain, entries in self.listing().items()}

    @rpc_method
    async def call(self, domain: Domain, device_id: Any, data: Any) -> Any:
        target = DeviceId.from_dict(device_id)
        entry = self._domain(domain).get(target)
        if entry is None:
            raise UnknownDeviceError(f"No device with ID {target}")
        return await entry.device.rpc_process(data)
