"""Devices whose firmware is outside the supported range, and devices in bootloader mode."""

from __future__ import annotations

from typing import Optional

from canhook.core.model import DeviceInfo
from canhook.devices.base import DeviceClient, FirmwareClient, GrappleDeviceClient
from canhook.rpc.envelope import Invoke
from canhook.rpc.protocols import DFU_DEVICE, OLD_VERSION_DEVICE


class OldVersionClient(GrappleDeviceClient):
    """Stub for an out-of-date device; only identification and upgrade work."""

    device_class = "OldVersionDevice"
    spec = OLD_VERSION_DEVICE

    async def get_error(self) -> str:
        return str(await self._rpc.call("get_error"))

    async def get_firmware_url(self) -> Optional[str]:
        url = await self._rpc.call("get_firmware_url")
        return None if url is None else str(url)


class DfuClient(DeviceClient):
    """A device sitting in its bootloader, waiting for a firmware image."""

    device_class = "FirmwareUpdate"
    spec = DFU_DEVICE

    def __init__(self, info: DeviceInfo, invoke: Invoke) -> None:
        super().__init__(info, invoke)
        self.firmware = FirmwareClient(self._rpc.tunnel("firmware", "msg"))
