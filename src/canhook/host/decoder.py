"""Schema-driven decoding of vendor frames into named signals."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple, Optional

from canhook.core.frame import CANFrame, MessageId
from canhook.host import grapple as g


LOGGER = logging.getLogger(__name__)


class ByteOrder(Enum):
    """Byte ordering for multi-byte signals."""

    LITTLE_ENDIAN = "little"
    BIG_ENDIAN = "big"


class MessageKey(NamedTuple):
    """Identifier fields that select a message, i.e. everything except the device id."""

    device_type: int
    manufacturer: int
    api_class: int
    api_index: int

    @classmethod
    def of(cls, msg_id: MessageId) -> MessageKey:
        return cls(msg_id.device_type, msg_id.manufacturer, msg_id.api_class, msg_id.api_index)


@dataclass
class SignalSchema:
    """A signal within a payload, addressed by its LSB position and width in bits."""

    name: str
    start_bit: int
    bit_length: int
    byte_order: ByteOrder = ByteOrder.LITTLE_ENDIAN
    signed: bool = False
    scale: float = 1.0
    offset: float = 0.0
    unit: str = ""

    def raw(self, data: bytes) -> int:
        if len(data) == 0:
            return 0
        value = int.from_bytes(data, byteorder=self.byte_order.value)
        raw_value = (value >> self.start_bit) & ((1 << self.bit_length) - 1)
        if self.signed and raw_value & (1 << (self.bit_length - 1)):
            raw_value -= 1 << self.bit_length
        return raw_value

    def decode(self, data: bytes) -> float:
        raw_value = self.raw(data)
        if self.scale == 1.0 and self.offset == 0.0:
            return raw_value
        return raw_value * self.scale + self.offset


@dataclass
class MessageSchema:
    key: MessageKey
    name: str
    signals: list[SignalSchema] = field(default_factory=list)


class FrameDecoder:
    """Turns raw frames into ``{"name", "device_id", "signals"}`` dictionaries.

    Frames without a registered schema decode to None.
    """

    def __init__(self, schemas: Optional[list[MessageSchema]] = None) -> None:
        self._schemas: dict[MessageKey, MessageSchema] = {}
        self._unknown: set[MessageKey] = set()
        for schema in schemas if schemas is not None else grapple_schemas():
            self.register_schema(schema)

    @property
    def unknown_keys(self) -> set[MessageKey]:
        return set(self._unknown)

    def register_schema(self, schema: MessageSchema) -> None:
        self._schemas[schema.key] = schema

    def get_schema(self, msg_id: MessageId) -> Optional[MessageSchema]:
        return self._schemas.get(MessageKey.of(msg_id))

    def decode(self, frame: CANFrame) -> Optional[dict[str, Any]]:
        key = MessageKey.of(frame.id)
        schema = self._schemas.get(key)
        if schema is None:
            self._unknown.add(key)
            return None
        return {
            "name": schema.name,
            "device_id": frame.id.device_id,
            "signals": {s.name: s.decode(frame.data) for s in schema.signals},
        }


def _schema(device_type: int, api_class: int, api_index: int, name: str, *signals: SignalSchema) -> MessageSchema:
    return MessageSchema(
        key=MessageKey(device_type, g.GRAPPLE_MANUFACTURER, api_class, api_index),
        name=name,
        signals=list(signals),
    )


def _u(name: str, start: int, length: int, **kwargs: Any) -> SignalSchema:
    return SignalSchema(name, start, length, **kwargs)


def _with_ack(device_type: int, api_class: int, api_index: int, name: str, *signals: SignalSchema) -> list[MessageSchema]:
    return [
        _schema(device_type, api_class, api_index, name, *signals),
        _schema(device_type, api_class, api_index | g.ACK_FLAG, f"{name}Ack", _u("result", 0, 8)),
    ]


def grapple_schemas() -> list[MessageSchema]:
    """Schemas of every message the simulated peripherals exchange."""
    serial = _u("serial", 0, 32)
    bcast, info = g.DEVICE_TYPE_BROADCAST, g.API_DEVICE_INFO
    fw = g.DEVICE_TYPE_FIRMWARE
    lc = g.DEVICE_TYPE_DISTANCE_SENSOR
    pdm = g.DEVICE_TYPE_POWER_DISTRIBUTION

    schemas = [
        _schema(bcast, info, g.IDX_ENUMERATE_REQUEST, "EnumerateRequest"),
        _schema(bcast, info, g.IDX_ENUMERATE_RESPONSE, "EnumerateResponse",
                serial, _u("model_id", 32, 8), _u("flags", 40, 8), _u("version", 48, 16)),
        _schema(bcast, info, g.IDX_BLINK, "Blink", serial),
        _schema(bcast, info, g.IDX_SET_ID, "SetId", serial, _u("new_id", 32, 8)),
        _schema(bcast, info, g.IDX_COMMIT, "CommitConfig", serial),
        _schema(bcast, info, g.IDX_SET_NAME, "SetName",
                serial, _u("offset", 32, 8), _u("length", 40, 8), _u("chars", 48, 16)),
        _schema(bcast, info, g.IDX_NAME_REPORT, "NameReport",
                serial, _u("offset", 32, 8), _u("length", 40, 8), _u("chars", 48, 16)),
        _schema(fw, g.API_FIRMWARE, g.IDX_START_FIELD_UPGRADE, "StartFieldUpgrade", serial),
        _schema(fw, g.API_FIRMWARE, g.IDX_UPDATE_PART, "UpdatePart", _u("chunk", 0, 64)),
        _schema(fw, g.API_FIRMWARE, g.IDX_UPDATE_PART_ACK, "UpdatePartAck"),
        _schema(fw, g.API_FIRMWARE, g.IDX_UPDATE_DONE, "UpdateDone"),
        _schema(lc, g.API_STATUS, g.IDX_MEASUREMENT, "LaserCanMeasurement",
                _u("status", 0, 8), _u("distance_mm", 8, 16, unit="mm"), _u("ambient", 24, 16),
                _u("mode", 40, 8), _u("budget_ms", 48, 8, unit="ms")),
        _schema(lc, g.API_STATUS, g.IDX_ROI_REPORT, "LaserCanRoi",
                _u("x", 0, 8), _u("y", 8, 8), _u("w", 16, 8), _u("h", 24, 8)),
        *_with_ack(lc, g.API_CONFIG, g.IDX_SET_RANGE, "LaserCanSetRange", _u("mode", 0, 8)),
        *_with_ack(lc, g.API_CONFIG, g.IDX_SET_ROI, "LaserCanSetRoi",
                   _u("x", 0, 8), _u("y", 8, 8), _u("w", 16, 8), _u("h", 24, 8)),
        *_with_ack(lc, g.API_CONFIG, g.IDX_SET_TIMING_BUDGET, "LaserCanSetTimingBudget",
                   _u("budget_ms", 0, 8, unit="ms")),
        _schema(pdm, g.API_STATUS, g.IDX_CHANNEL_STATUS, "MitocandriaChannelStatus",
                _u("channel", 0, 8), _u("flags", 8, 8), _u("current", 16, 16, scale=0.001, unit="A"),
                _u("voltage", 32, 16, scale=0.001, unit="V"), _u("voltage_setpoint", 48, 16, scale=0.001, unit="V")),
        *_with_ack(pdm, g.API_CONFIG, g.IDX_SET_SWITCHABLE, "MitocandriaSetSwitchable",
                   _u("channel", 0, 8), _u("enabled", 8, 8)),
        *_with_ack(pdm, g.API_CONFIG, g.IDX_SET_ADJUSTABLE, "MitocandriaSetAdjustable",
                   _u("channel", 0, 8), _u("voltage", 8, 16, scale=0.001, unit="V")),
    ]
    return schemas
