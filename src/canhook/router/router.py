"""Hierarchical router: provider set -> provider -> device set -> device."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from canhook.core.model import DeviceId, DeviceInfo, DeviceListing, Domain, ProviderAddress, ProviderInfo
from canhook.errors import CanHookError, ErrorSink, report_error
from canhook.rpc.envelope import Invoke, RpcClient
from canhook.rpc.protocols import DEVICE_MANAGER, PROVIDER, PROVIDER_MANAGER
from canhook.router.registry import DeviceRegistry, default_registry


LOGGER = logging.getLogger(__name__)


class DeviceManagerClient:
    """The device set behind one provider."""

    def __init__(self, invoke: Invoke) -> None:
        self._rpc = RpcClient(invoke, DEVICE_MANAGER)

    async def devices(self) -> dict[Domain, list[DeviceListing]]:
        listing = await self._rpc.call("devices")
        return {
            domain: [DeviceListing.from_wire(entry) for entry in entries]
            for domain, entries in (listing or {}).items()
        }

    async def call(self, domain: Domain, device_id: DeviceId, data: Any) -> Any:
        """Forward an untyped device envelope to one device."""
        return await self._rpc.call("call", domain=domain, device_id=device_id.to_dict(), data=data)

    def device_invoker(self, domain: Domain, device_id: DeviceId) -> Invoke:
        return self._rpc.tunnel("call", "data", domain=domain, device_id=device_id.to_dict())


class ProviderClient:
    def __init__(self, invoke: Invoke) -> None:
        self._rpc = RpcClient(invoke, PROVIDER)

    async def connect(self) -> None:
        await self._rpc.call("connect")

    async def disconnect(self) -> None:
        await self._rpc.call("disconnect")

    async def info(self) -> ProviderInfo:
        return ProviderInfo.from_dict(await self._rpc.call("info"))

    def device_manager(self) -> DeviceManagerClient:
        return DeviceManagerClient(self._rpc.tunnel("device_manager_call", "req"))


class ProviderManagerClient:
    """The root of the hierarchy: every known provider, keyed by address."""

    def __init__(self, invoke: Invoke) -> None:
        self._rpc = RpcClient(invoke, PROVIDER_MANAGER)

    async def providers(self) -> dict[ProviderAddress, ProviderInfo]:
        result = await self._rpc.call("providers")
        return {address: ProviderInfo.from_dict(info) for address, info in (result or {}).items()}

    async def delete(self, address: ProviderAddress) -> None:
        await self._rpc.call("delete", address=address)

    def provider(self, address: ProviderAddress) -> ProviderClient:
        return ProviderClient(self._rpc.tunnel("provider", "msg", address=address))


@dataclass
class FleetSnapshot:
    """Providers and the devices each one listed, as of one refresh."""

    providers: dict[ProviderAddress, ProviderInfo] = field(default_factory=dict)
    devices: dict[ProviderAddress, dict[Domain, list[DeviceListing]]] = field(default_factory=dict)

    def listings(self) -> list[tuple[ProviderAddress, Domain, DeviceListing]]:
        return [
            (address, domain, listing)
            for address, domains in self.devices.items()
            for domain, entries in domains.items()
            for listing in entries
        ]


class Router:
    """Composes nested invokers so a request reaches one device.

    A device is addressed by ``(address, domain, device_id)`` alone; no prior
    listing call is needed.
    """

    def __init__(
        self,
        invoke: Invoke,
        registry: Optional[DeviceRegistry] = None,
        error_sink: Optional[ErrorSink] = None,
    ) -> None:
        self.providers = ProviderManagerClient(invoke)
        self.registry = registry or default_registry()
        self._error_sink = error_sink
        self.latest: Optional[FleetSnapshot] = None

    def provider(self, address: ProviderAddress) -> ProviderClient:
        return self.providers.provider(address)

    def device_manager(self, address: ProviderAddress) -> DeviceManagerClient:
        return self.provider(address).device_manager()

    def device_invoker(self, address: ProviderAddress, domain: Domain, device_id: DeviceId) -> Invoke:
        return self.device_manager(address).device_invoker(domain, device_id)

    def open_device(
        self,
        address: ProviderAddress,
        domain: Domain,
        device_id: DeviceId,
        device_class: str,
        info: DeviceInfo,
    ) -> Any:
        """Return the client for a device, chosen by its device class."""
        invoke = self.device_invoker(address, domain, device_id)
        return self.registry.create(device_class, info, invoke)

    async def snapshot(self) -> FleetSnapshot:
        """Refresh providers and, for each connected one, its device listing.

        A provider whose listing fails is reported and left out; the others are
        still returned.
        """
        snapshot = FleetSnapshot(providers=await self.providers.providers())
        for address, info in snapshot.providers.items():
            if not info.connected:
                continue
            try:
                snapshot.devices[address] = await self.device_manager(address).devices()
            except CanHookError as exc:
                report_error(LOGGER, self._error_sink, exc, f"Listing devices of {address}")
        self.latest = snapshot
        return snapshot
