"""Mapping from device-class strings to client factories."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from canhook.core.model import DeviceInfo
from canhook.devices import CanLogClient, DfuClient, LaserCanClient, MitocandriaClient, OldVersionClient
from canhook.rpc.envelope import Invoke


LOGGER = logging.getLogger(__name__)

DeviceFactory = Callable[[DeviceInfo, Invoke], Any]


class UnsupportedDevice:
    """Placeholder for a device class no factory is registered for."""

    def __init__(self, device_class: str, info: DeviceInfo) -> None:
        self.device_class = device_class
        self.info = info

    @property
    def description(self) -> str:
        return f"Unknown Device Type: {self.info.device_type.render()} ({self.device_class})"

    def __repr__(self) -> str:
        return f"UnsupportedDevice({self.device_class!r})"


class DeviceRegistry:
    """Resolves a listing's device class to the client that speaks its protocol."""

    def __init__(self) -> None:
        self._factories: dict[str, DeviceFactory] = {}

    def register(self, device_class: str, factory: DeviceFactory) -> None:
        self._factories[device_class] = factory

    def unregister(self, device_class: str) -> None:
        self._factories.pop(device_class, None)

    def __contains__(self, device_class: object) -> bool:
        return device_class in self._factories

    def get(self, device_class: str) -> Optional[DeviceFactory]:
        return self._factories.get(device_class)

    def create(self, device_class: str, info: DeviceInfo, invoke: Invoke) -> Any:
        """Build a client, or an :class:`UnsupportedDevice` when the class is unknown."""
        factory = self._factories.get(device_class)
        if factory is None:
            LOGGER.info("No handler for device class %r", device_class)
            return UnsupportedDevice(device_class, info)
        return factory(info, invoke)


def default_registry() -> DeviceRegistry:
    registry = DeviceRegistry()
    for client in (LaserCanClient, MitocandriaClient, OldVersionClient, DfuClient, CanLogClient):
        registry.register(client.device_class, client)
    return registry
