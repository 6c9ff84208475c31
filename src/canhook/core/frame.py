"""CAN message identifier and frame representation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


CAN_EXT_ID_MAX = 0x1FFFFFFF     # 29-bit
CAN_CLASSIC_MAX_DLC = 8

DEVICE_ID_BROADCAST = 0x3F

# (name, bit width, shift) of each identifier sub-field, most significant first
_ID_LAYOUT = (
    ("device_type", 5, 24),
    ("manufacturer", 8, 16),
    ("api_class", 6, 10),
    ("api_index", 4, 6),
    ("device_id", 6, 0),
)


@dataclass(frozen=True)
class MessageId:
    """A 29-bit extended identifier split into its addressing sub-fields.

    Attributes:
        device_type: Class of device (motor controller, distance sensor, ...).
        manufacturer: Vendor of the device or message family.
        api_class: Group of related messages within the vendor's API.
        api_index: Message within the API class.
        device_id: Per-device address on the bus; 0x3F is broadcast.
    """

    device_type: int
    manufacturer: int
    api_class: int
    api_index: int
    device_id: int

    def __post_init__(self) -> None:
        for name, width, _shift in _ID_LAYOUT:
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"{name} must be an integer, got {value!r}")
            if not (0 <= value < (1 << width)):
                raise ValueError(f"{name} must be 0-{(1 << width) - 1}, got {value}")

    def to_raw(self) -> int:
        """Pack the sub-fields into a raw 29-bit identifier."""
        raw = 0
        for name, _width, shift in _ID_LAYOUT:
            raw |= getattr(self, name) << shift
        return raw

    @classmethod
    def from_raw(cls, raw: int) -> MessageId:
        """Split a raw 29-bit identifier into its sub-fields."""
        if not (0 <= raw <= CAN_EXT_ID_MAX):
            raise ValueError(f"Extended CAN ID out of range: {raw:#x}")
        return cls(**{
            name: (raw >> shift) & ((1 << width) - 1)
            for name, width, shift in _ID_LAYOUT
        })

    def with_device_id(self, device_id: int) -> MessageId:
        """Return the same message addressed to another device."""
        return MessageId(
            device_type=self.device_type,
            manufacturer=self.manufacturer,
            api_class=self.api_class,
            api_index=self.api_index,
            device_id=device_id,
        )

    def to_dict(self) -> dict[str, int]:
        return {name: getattr(self, name) for name, _width, _shift in _ID_LAYOUT}

    @staticmethod
    def from_dict(d: dict[str, Any]) -> MessageId:
        return MessageId(**{name: int(d[name]) for name, _width, _shift in _ID_LAYOUT})

    def __repr__(self) -> str:
        return (
            f"MessageId(type={self.device_type:#04x}, manu={self.manufacturer:#04x}, "
            f"acls={self.api_class:#04x}, aidx={self.api_index:#03x}, id={self.device_id})"
        )


@dataclass(frozen=True)
class CANFrame:
    """Represents a single bridged CAN frame.

    Attributes:
        id: Decomposed extended identifier.
        data: Payload bytes (0-8 bytes for classical CAN).
        timestamp: Origin-defined time of the frame, in milliseconds.
    """

    id: MessageId
    data: bytes = field(default_factory=bytes)
    timestamp: int = 0

    def __post_init__(self) -> None:
        if len(self.data) > CAN_CLASSIC_MAX_DLC:
            raise ValueError(f"CAN frame data cannot exceed 8 bytes, got {len(self.data)}")

    def hex_data(self, sep: str = " ") -> str:
        """Return data as lowercase two-digit hex bytes."""
        return sep.join(f"{b:02x}" for b in self.data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id.to_dict(),
            "timestamp": self.timestamp,
            "data": list(self.data),
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> CANFrame:
        return CANFrame(
            id=MessageId.from_dict(d["id"]),
            data=bytes(d.get("data", [])),
            timestamp=int(d.get("timestamp", 0)),
        )

    def __repr__(self) -> str:
        return f"CANFrame(id={self.id.to_raw():#010x}, data={self.hex_data('')}, ts={self.timestamp})"
