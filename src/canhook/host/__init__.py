"""In-process host environment: providers, device sets and simulated peripherals."""

from __future__ import annotations

from typing import Optional

from canhook.config import HostConfig
from canhook.host.bus import VirtualCANBus
from canhook.host.canlog import CanLogSource
from canhook.host.device_manager import DeviceManager
from canhook.host.node import SimulatedFlexiCan, SimulatedLaserCan, SimulatedMitocandria, SimulatedPeripheral
from canhook.host.provider import BRIDGE_DOMAIN, BridgeProvider, ProviderManager

__all__ = [
    "BRIDGE_DOMAIN",
    "DEMO_ADDRESS",
    "BridgeProvider",
    "CanLogSource",
    "DeviceManager",
    "ProviderManager",
    "SimulatedFlexiCan",
    "SimulatedLaserCan",
    "SimulatedMitocandria",
    "SimulatedPeripheral",
    "VirtualCANBus",
    "build_demo_host",
]

DEMO_ADDRESS = "sim://bridge0"


def build_demo_host(config: Optional[HostConfig] = None) -> ProviderManager:
    """A provider set with one bridge and a handful of peripherals on its bus."""
    bridge = BridgeProvider(DEMO_ADDRESS, config=config)
    bridge.add_peripheral(SimulatedLaserCan(0x1001, 1, firmware_version="2024.2.1", name="front"))
    bridge.add_peripheral(SimulatedLaserCan(0x1002, 2, firmware_version="2024.1.0", upgraded_version="2024.2.1"))
    bridge.add_peripheral(SimulatedMitocandria(0x2001, 3, name="power"))
    bridge.add_peripheral(SimulatedFlexiCan(0x3001, 4))

    manager = ProviderManager()
    manager.add_provider(bridge)
    return manager
