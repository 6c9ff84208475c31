"""Addressing and snapshot types shared by every protocol layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union


ProviderAddress = str
Domain = str

GRAPPLE_MODELS = ("LaserCan", "MitoCANdria", "FlexiCAN", "SpiderLan")


@dataclass(frozen=True, order=True)
class DeviceId:
    """Identifier of a device within a domain.

    A device in firmware-update mode is addressed as ``Dfu(serial)``, otherwise
    as ``Serial(serial)``. Serialized externally tagged: ``{"Serial": 5}``.
    """

    kind: str
    serial: int

    def __post_init__(self) -> None:
        if self.kind not in ("Serial", "Dfu"):
            raise ValueError(f"Unknown device id kind: {self.kind!r}")
        if not (0 <= self.serial <= 0xFFFFFFFF):
            raise ValueError(f"serial must fit in 32 bits, got {self.serial}")

    @classmethod
    def of_serial(cls, serial: int) -> DeviceId:
        return cls("Serial", serial)

    @classmethod
    def dfu(cls, serial: int) -> DeviceId:
        return cls("Dfu", serial)

    @property
    def is_dfu(self) -> bool:
        return self.kind == "Dfu"

    def to_dict(self) -> dict[str, int]:
        return {self.kind: self.serial}

    @staticmethod
    def from_dict(d: Any) -> DeviceId:
        if isinstance(d, DeviceId):
            return d
        if not isinstance(d, dict) or len(d) != 1:
            raise ValueError(f"Malformed device id: {d!r}")
        ((kind, serial),) = d.items()
        return DeviceId(kind, int(serial))

    def __str__(self) -> str:
        return f"{self.kind}({self.serial:#x})"


@dataclass(frozen=True)
class DeviceType:
    """Closed set of device types; ``model`` is set only for vendor devices."""

    kind: str
    model: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind == "Grapple":
            if self.model not in GRAPPLE_MODELS:
                raise ValueError(f"Unknown model id: {self.model!r}")
        elif self.kind in ("RoboRIO", "CanBridge", "Unknown"):
            if self.model is not None:
                raise ValueError(f"{self.kind} devices carry no model id")
        else:
            raise ValueError(f"Unknown device type: {self.kind!r}")

    @classmethod
    def grapple(cls, model: str) -> DeviceType:
        return cls("Grapple", model)

    def to_dict(self) -> Union[str, dict[str, str]]:
        if self.kind == "Grapple":
            return {"Grapple": self.model}
        return self.kind

    @staticmethod
    def from_dict(d: Any) -> DeviceType:
        if isinstance(d, str):
            return DeviceType(d)
        if isinstance(d, dict) and "Grapple" in d:
            return DeviceType("Grapple", d["Grapple"])
        raise ValueError(f"Malformed device type: {d!r}")

    def render(self) -> str:
        """Human-readable name of the device type."""
        if self.kind == "Grapple":
            return str(self.model)
        if self.kind == "RoboRIO":
            return "NI RoboRIO"
        if self.kind == "CanBridge":
            return "CAN Bridge"
        return "Unknown Device"


@dataclass(frozen=True)
class DeviceInfo:
    """Snapshot of a device as reported by a device listing."""

    device_type: DeviceType
    device_id: Optional[int] = None
    serial: Optional[int] = None
    firmware_version: Optional[str] = None
    name: Optional[str] = None
    is_dfu: bool = False
    is_dfu_in_progress: bool = False

    def require_serial(self) -> int:
        if self.serial is None:
            raise ValueError("No Serial Number for Device!")
        return self.serial

    def require_device_id(self) -> int:
        if self.device_id is None:
            raise ValueError("No Device ID for Device!")
        return self.device_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_type": self.device_type.to_dict(),
            "device_id": self.device_id,
            "serial": self.serial,
            "firmware_version": self.firmware_version,
            "name": self.name,
            "is_dfu": self.is_dfu,
            "is_dfu_in_progress": self.is_dfu_in_progress,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> DeviceInfo:
        return DeviceInfo(
            device_type=DeviceType.from_dict(d["device_type"]),
            device_id=d.get("device_id"),
            serial=d.get("serial"),
            firmware_version=d.get("firmware_version"),
            name=d.get("name"),
            is_dfu=bool(d.get("is_dfu", False)),
            is_dfu_in_progress=bool(d.get("is_dfu_in_progress", False)),
        )

    def title(self) -> str:
        """One-line heading for the device, as shown in device lists."""
        parts = [self.device_type.render()]
        if self.device_id is not None:
            parts.append(f"#{self.device_id}")
        if self.is_dfu:
            parts.append("FIRMWARE UPDATE")
        elif self.name is not None:
            parts.append(f"({self.name})")
        return " ".join(parts)


@dataclass(frozen=True)
class ProviderInfo:
    """Snapshot of a provider."""

    address: ProviderAddress
    description: str
    connected: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "description": self.description,
            "connected": self.connected,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> ProviderInfo:
        return ProviderInfo(
            address=str(d["address"]),
            description=str(d["description"]),
            connected=bool(d["connected"]),
        )


@dataclass(frozen=True)
class DeviceListing:
    """One entry of a device-set listing."""

    device_id: DeviceId
    info: DeviceInfo
    device_class: str

    def to_wire(self) -> list[Any]:
        return [self.device_id.to_dict(), self.info.to_dict(), self.device_class]

    @staticmethod
    def from_wire(entry: Any) -> DeviceListing:
        device_id, info, device_class = entry
        return DeviceListing(
            device_id=DeviceId.from_dict(device_id),
            info=DeviceInfo.from_dict(info),
            device_class=str(device_class),
        )
