"""Sub-protocols shared by every vendor device."""

from __future__ import annotations

import logging
from typing import Any, Callable, ClassVar, Optional, TypeVar

from canhook.core.model import DeviceInfo
from canhook.errors import ProtocolMismatchError, ValidationError
from canhook.rpc.envelope import Invoke, ProtocolSpec, RpcClient
from canhook.rpc.protocols import FIRMWARE_UPGRADE, GENERIC_DEVICE


LOGGER = logging.getLogger(__name__)

MAX_DEVICE_ID = 0x3E
MAX_NAME_LENGTH = 16

T = TypeVar("T")


def check_device_id(value: Any) -> int:
    """Validate a CAN device id a user wants to assign."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Device ID must be an integer, got {value!r}")
    if not (0 <= value <= MAX_DEVICE_ID):
        raise ValidationError(f"Device ID must be between 0 and {MAX_DEVICE_ID}, got {value}")
    return value


def decode_response(method: str, decode: Callable[[Any], T], value: Any) -> T:
    """Parse a device reply, turning a malformed payload into a protocol error."""
    try:
        return decode(value)
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise ProtocolMismatchError(f"Malformed {method} reply: {exc!r}") from exc


def check_device_name(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"Device name must be a string, got {value!r}")
    if len(value) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"Device name must be at most {MAX_NAME_LENGTH} characters, got {len(value)}"
        )
    return value


class GenericDeviceClient:
    """Identify, re-address, rename and persist a device."""

    def __init__(self, invoke: Invoke) -> None:
        self._rpc = RpcClient(invoke, GENERIC_DEVICE)

    async def blink(self) -> None:
        await self._rpc.call("blink")

    async def set_id(self, id: int) -> None:
        await self._rpc.call("set_id", id=check_device_id(id))

    async def set_name(self, name: str) -> None:
        await self._rpc.call("set_name", name=check_device_name(name))

    async def commit_to_eeprom(self) -> None:
        await self._rpc.call("commit_to_eeprom")


class FirmwareClient:
    """Field-upgrade sub-protocol."""

    def __init__(self, invoke: Invoke) -> None:
        self._rpc = RpcClient(invoke, FIRMWARE_UPGRADE)

    async def start_field_upgrade(self) -> None:
        """Ask the device to reboot into its bootloader."""
        await self._rpc.call("start_field_upgrade")

    async def progress(self) -> Optional[float]:
        """Upload progress in percent, or None when no upload is running."""
        value = await self._rpc.call("progress")
        return None if value is None else float(value)

    async def do_field_upgrade(self, data: bytes) -> None:
        """Start uploading a firmware image; returns once the upload is started."""
        if not data:
            raise ValidationError("Firmware image is empty")
        await self._rpc.call("do_field_upgrade", data=list(data))


class DeviceClient:
    """A device opened through the router, bound to its device-class protocol."""

    device_class: ClassVar[str] = ""
    spec: ClassVar[ProtocolSpec]

    def __init__(self, info: DeviceInfo, invoke: Invoke) -> None:
        self.info = info
        self._rpc = RpcClient(invoke, self.spec)

    @property
    def description(self) -> str:
        return self.info.title()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.description!r})"


class GrappleDeviceClient(DeviceClient):
    """Vendor device carrying the generic and firmware sub-protocols."""

    def __init__(self, info: DeviceInfo, invoke: Invoke) -> None:
        super().__init__(info, invoke)
        self.generic = GenericDeviceClient(self._rpc.tunnel("generic", "msg"))
        self.firmware = FirmwareClient(self._rpc.tunnel("firmware", "msg"))
