"""Core value types for CAN frames and device addressing."""

from canhook.core.frame import CANFrame, MessageId, DEVICE_ID_BROADCAST
from canhook.core.model import (
    DeviceId,
    DeviceInfo,
    DeviceListing,
    DeviceType,
    ProviderInfo,
)

__all__ = [
    "CANFrame",
    "MessageId",
    "DEVICE_ID_BROADCAST",
    "DeviceId",
    "DeviceInfo",
    "DeviceListing",
    "DeviceType",
    "ProviderInfo",
]
