"""Hierarchical routing of requests to providers and devices."""

from canhook.router.registry import DeviceRegistry, UnsupportedDevice, default_registry
from canhook.router.router import (
    DeviceManagerClient,
    FleetSnapshot,
    ProviderClient,
    ProviderManagerClient,
    Router,
)

__all__ = [
    "DeviceRegistry",
    "UnsupportedDevice",
    "default_registry",
    "DeviceManagerClient",
    "FleetSnapshot",
    "ProviderClient",
    "ProviderManagerClient",
    "Router",
]
