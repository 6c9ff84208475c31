"""canhook - CAN device fleet management, capture and replay."""

__version__ = "0.1.0"

from canhook.capture.buffer import CaptureBuffer
from canhook.core.frame import CANFrame, MessageId
from canhook.core.model import DeviceId, DeviceInfo, DeviceType, ProviderInfo
from canhook.replay.player import ReplayPlayer
from canhook.router.router import Router
from canhook.rpc.transport import LoopbackTransport

__all__ = [
    "CANFrame",
    "MessageId",
    "DeviceId",
    "DeviceInfo",
    "DeviceType",
    "ProviderInfo",
    "CaptureBuffer",
    "ReplayPlayer",
    "Router",
    "LoopbackTransport",
]
