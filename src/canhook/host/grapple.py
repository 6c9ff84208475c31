"""Vendor CAN message vocabulary spoken by the simulated peripherals."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Optional

from canhook.core.frame import CANFrame, MessageId
from canhook.devices.lasercan import RANGING_MODES


GRAPPLE_MANUFACTURER = 6

DEVICE_TYPE_BROADCAST = 0
DEVICE_TYPE_DISTANCE_SENSOR = 6
DEVICE_TYPE_POWER_DISTRIBUTION = 8
DEVICE_TYPE_FIRMWARE = 31

# api classes
API_DEVICE_INFO = 0
API_FIRMWARE = 0
API_STATUS = 0
API_CONFIG = 1

# device info (broadcast) indices
IDX_ENUMERATE_REQUEST = 0
IDX_ENUMERATE_RESPONSE = 1
IDX_BLINK = 2
IDX_SET_ID = 3
IDX_COMMIT = 4
IDX_SET_NAME = 5
IDX_NAME_REPORT = 6

# firmware indices
IDX_START_FIELD_UPGRADE = 0
IDX_UPDATE_PART = 1
IDX_UPDATE_PART_ACK = 2
IDX_UPDATE_DONE = 3

# distance sensor
IDX_MEASUREMENT = 0
IDX_ROI_REPORT = 1
IDX_SET_RANGE = 0
IDX_SET_ROI = 1
IDX_SET_TIMING_BUDGET = 2

# power distribution
IDX_CHANNEL_STATUS = 0
IDX_SET_SWITCHABLE = 0
IDX_SET_ADJUSTABLE = 1

# set on the api index of a reply to a config request
ACK_FLAG = 0x8

MODEL_IDS = {"SpiderLan": 0x00, "LaserCan": 0x10, "MitoCANdria": 0x20, "FlexiCAN": 0x30}
MODELS_BY_ID = {v: k for k, v in MODEL_IDS.items()}

BUDGET_MS = {"TB20ms": 20, "TB33ms": 33, "TB50ms": 50, "TB100ms": 100}
BUDGETS_BY_MS = {v: k for k, v in BUDGET_MS.items()}

CHANNEL_TYPES = ("NonSwitchable", "Switchable", "Adjustable")


def grapple_id(device_type: int, api_class: int, api_index: int, device_id: int) -> MessageId:
    return MessageId(device_type, GRAPPLE_MANUFACTURER, api_class, api_index, device_id)


def grapple_frame(
    device_type: int,
    api_class: int,
    api_index: int,
    device_id: int,
    data: bytes = b"",
) -> CANFrame:
    return CANFrame(id=grapple_id(device_type, api_class, api_index, device_id), data=bytes(data))


def ack_id(msg_id: MessageId) -> MessageId:
    """Identifier of the reply to a config request."""
    return MessageId(
        msg_id.device_type, msg_id.manufacturer, msg_id.api_class, msg_id.api_index | ACK_FLAG, msg_id.device_id
    )


def is_grapple(msg_id: MessageId) -> bool:
    return msg_id.manufacturer == GRAPPLE_MANUFACTURER


def matches(msg_id: MessageId, device_type: int, api_class: int, api_index: int) -> bool:
    return (
        is_grapple(msg_id)
        and msg_id.device_type == device_type
        and msg_id.api_class == api_class
        and msg_id.api_index == api_index
    )


def serial_payload(serial: int, *extra: int) -> bytes:
    return struct.pack("<I", serial) + bytes(extra)


def payload_serial(data: bytes) -> Optional[int]:
    if len(data) < 4:
        return None
    return struct.unpack_from("<I", data)[0]


def parse_version(version: str) -> tuple[int, int, int]:
    """Parse ``YEAR.MINOR.PATCH``; raises ValueError for anything else."""
    parts = version.strip().split(".")
    if len(parts) != 3:
        raise ValueError(f"Invalid firmware version: {version!r}")
    year, minor, patch = (int(p) for p in parts)
    return year, minor, patch


def pack_version(version: str) -> int:
    year, minor, patch = parse_version(version)
    if not (2000 <= year < 2128 and 0 <= minor < 16 and 0 <= patch < 32):
        raise ValueError(f"Firmware version out of range: {version!r}")
    return ((year - 2000) << 9) | (minor << 5) | patch


def unpack_version(packed: int) -> str:
    return f"{(packed >> 9) + 2000}.{(packed >> 5) & 0xF}.{packed & 0x1F}"


@dataclass(frozen=True)
class VersionRange:
    """Half-open firmware version range ``[minimum, maximum)``."""

    minimum: str
    maximum: str

    def contains(self, version: Optional[str]) -> bool:
        if version is None:
            return False
        try:
            v = parse_version(version)
        except ValueError:
            return False
        return parse_version(self.minimum) <= v < parse_version(self.maximum)

    def __str__(self) -> str:
        return f">= {self.minimum}, < {self.maximum}"


@dataclass(frozen=True)
class EnumerateResponse:
    """Reply of a device to an enumerate request."""

    serial: int
    model: str
    version: str
    is_dfu: bool = False
    is_dfu_in_progress: bool = False

    def encode(self) -> bytes:
        flags = (1 if self.is_dfu else 0) | (2 if self.is_dfu_in_progress else 0)
        return struct.pack("<IBBH", self.serial, MODEL_IDS[self.model], flags, pack_version(self.version))

    @staticmethod
    def decode(data: bytes) -> EnumerateResponse:
        if len(data) != 8:
            raise ValueError(f"Enumerate response must be 8 bytes, got {len(data)}")
        serial, model_id, flags, packed = struct.unpack("<IBBH", data)
        if model_id not in MODELS_BY_ID:
            raise ValueError(f"Unknown model id: {model_id:#x}")
        return EnumerateResponse(
            serial=serial,
            model=MODELS_BY_ID[model_id],
            version=unpack_version(packed),
            is_dfu=bool(flags & 1),
            is_dfu_in_progress=bool(flags & 2),
        )


def name_fragments(serial: int, name: str) -> list[bytes]:
    """Split a name into ``serial, offset, total length, 2 bytes`` payloads."""
    encoded = name.encode("utf-8")
    total = len(encoded)
    if total == 0:
        return [serial_payload(serial, 0, 0, 0, 0)]
    fragments = []
    for offset in range(0, total, 2):
        chunk = encoded[offset:offset + 2].ljust(2, b"\x00")
        fragments.append(serial_payload(serial, offset, total) + chunk)
    return fragments


@dataclass
class NameAssembler:
    """Reassembles names sent as fragments, per serial number."""

    _partial: dict[int, bytearray] = field(default_factory=dict)
    _seen: dict[int, set[int]] = field(default_factory=dict)

    def feed(self, data: bytes) -> Optional[tuple[int, str]]:
        """Add one fragment; returns ``(serial, name)`` once a name is complete."""
        if len(data) != 8:
            return None
        serial, offset, total = struct.unpack_from("<IBB", data)
        if total == 0:
            self._partial.pop(serial, None)
            self._seen.pop(serial, None)
            return serial, ""
        buf = self._partial.get(serial)
        if buf is None or len(buf) != total or offset == 0:
            buf = self._partial[serial] = bytearray(total)
            self._seen[serial] = set()
        if offset >= total:
            return None
        buf[offset:offset + 2] = data[6:8][: total - offset]
        self._seen[serial].add(offset)
        if len(self._seen[serial]) * 2 >= total:
            name = bytes(self._partial.pop(serial)).decode("utf-8", errors="replace")
            self._seen.pop(serial, None)
            return serial, name
        return None


def encode_measurement(status: int, distance_mm: int, ambient: int, mode: str, budget: str) -> bytes:
    return struct.pack(
        "<BHHBBx", status, distance_mm, ambient, RANGING_MODES.index(mode), BUDGET_MS[budget]
    )


def decode_measurement(data: bytes) -> dict:
    status, distance_mm, ambient, mode, budget = struct.unpack("<BHHBBx", data)
    return {
        "status": status,
        "distance_mm": distance_mm,
        "ambient": ambient,
        "mode": RANGING_MODES[mode],
        "budget": BUDGETS_BY_MS[budget],
    }


def encode_roi(x: int, y: int, w: int, h: int) -> bytes:
    return bytes((x, y, w, h))


def decode_roi(data: bytes) -> dict:
    x, y, w, h = data[:4]
    return {"x": x, "y": y, "w": w, "h": h}


def encode_channel_status(
    channel: int, kind: str, enabled: bool, current: int, voltage: int, setpoint: int
) -> bytes:
    """Status of one power channel; current in mA, voltages in mV."""
    return struct.pack(
        "<BBHHH",
        channel,
        CHANNEL_TYPES.index(kind) | (0x80 if enabled else 0),
        current,
        voltage,
        setpoint,
    )


def decode_channel_status(data: bytes) -> tuple[int, dict]:
    channel, flags, current, voltage, setpoint = struct.unpack("<BBHHH", data)
    return channel, {
        "type": CHANNEL_TYPES[flags & 0x7F],
        "data": {
            "enabled": bool(flags & 0x80),
            "current": current,
            "voltage": voltage,
            "voltage_setpoint": setpoint,
        },
    }
