"""Client-side device sub-protocol handlers."""

from canhook.devices.base import DeviceClient, FirmwareClient, GenericDeviceClient, GrappleDeviceClient
from canhook.devices.canlog import CanLogClient
from canhook.devices.lasercan import LaserCanClient, LaserCanRoi
from canhook.devices.mitocandria import MitocandriaClient
from canhook.devices.old_version import DfuClient, OldVersionClient

__all__ = [
    "DeviceClient",
    "FirmwareClient",
    "GenericDeviceClient",
    "GrappleDeviceClient",
    "CanLogClient",
    "LaserCanClient",
    "LaserCanRoi",
    "MitocandriaClient",
    "DfuClient",
    "OldVersionClient",
]
