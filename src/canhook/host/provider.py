"""Simulated providers and the provider set that holds them."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from canhook.config import HostConfig
from canhook.core.frame import CANFrame
from canhook.core.model import DeviceId, DeviceInfo, DeviceType, ProviderAddress
from canhook.errors import ProviderError, UnknownProviderError
from canhook.host.bus import VirtualCANBus
from canhook.host.canlog import CanLogSource
from canhook.host.device_manager import DeviceManager
from canhook.host.node import SimulatedPeripheral
from canhook.rpc.server import RpcHandler, rpc_method


LOGGER = logging.getLogger(__name__)

BRIDGE_DOMAIN = "canbus"


class BridgeProvider(RpcHandler):
    """A CAN bridge owning one virtual bus and the peripherals attached to it.

    The bridge listens to its own bus and hands every frame to its device set,
    where the capture mailbox is registered as a fixed entry. While connected
    it enumerates the bus every ``enumerate_interval`` seconds.
    """

    protocol_name = "DeviceProvider"

    def __init__(
        self,
        address: ProviderAddress,
        description: str = "Simulated CAN Bridge",
        bridge_serial: int = 0xB0000001,
        config: Optional[HostConfig] = None,
    ) -> None:
        self.address = address
        self.description = description
        self.name = f"bridge:{address}"
        self._config = config or HostConfig()
        self.bus = VirtualCANBus(address)
        self.peripherals: list[SimulatedPeripheral] = []
        self.device_manager = DeviceManager({BRIDGE_DOMAIN: self.bus.transmit}, self._config)
        self.bridge_id = DeviceId.of_serial(bridge_serial)
        self.canlog = CanLogSource(
            self.bus.transmit,
            DeviceInfo(device_type=DeviceType("CanBridge"), serial=bridge_serial, name=description),
            max_size=self._config.mailbox_size,
        )
        self.device_manager.add_device(BRIDGE_DOMAIN, self.bridge_id, self.canlog)
        self._connected = False
        self._tick_task: Optional[asyncio.Task[None]] = None

    @property
    def connected(self) -> bool:
        return self._connected

    def add_peripheral(self, peripheral: SimulatedPeripheral) -> None:
        self.peripherals.append(peripheral)
        if self._connected:
            peripheral.attach(self.bus)

    async def receive(self, frame: CANFrame) -> None:
        await self.device_manager.on_frame(BRIDGE_DOMAIN, frame)

    async def enumerate(self) -> None:
        """Run one enumeration round and wait for every reply to be processed."""
        await self.device_manager.tick()
        await self.bus.drain()

    async def _tick_loop(self) -> None:
        while self._connected:
            await asyncio.sleep(self._config.enumerate_interval)
            await self.device_manager.tick()

    @rpc_method
    async def connect(self) -> None:
        if self._connected:
            return
        LOGGER.info("Connecting %s", self.address)
        await self.bus.start()
        self.bus.attach_node(self)
        for peripheral in self.peripherals:
            peripheral.attach(self.bus)
            await peripheral.start()
        self._connected = True
        await self.enumerate()
        self._tick_task = asyncio.create_task(self._tick_loop())

    @rpc_method
    async def disconnect(self) -> None:
        if not self._connected:
            return
        LOGGER.info("Disconnecting %s", self.address)
        self._connected = False
        if self._tick_task:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None
        for peripheral in self.peripherals:
            await peripheral.stop()
            peripheral.detach()
        self.bus.detach_node(self)
        await self.bus.stop()
        await self.device_manager.reset()

    @rpc_method
    async def info(self) -> dict[str, Any]:
        return {"address": self.address, "description": self.description, "connected": self._connected}

    @rpc_method
    async def device_manager_call(self, req: Any) -> Any:
        if not self._connected:
            raise ProviderError(f"Provider {self.address} is not connected")
        return await self.device_manager.rpc_process(req)


class ProviderManager(RpcHandler):
    """The provider set: every provider the host knows about, by address."""

    protocol_name = "ProviderManager"

    def __init__(self) -> None:
        self._providers: dict[ProviderAddress, BridgeProvider] = {}

    def add_provider(self, provider: BridgeProvider) -> None:
        self._providers[provider.address] = provider

    def __getitem__(self, address: ProviderAddress) -> BridgeProvider:
        provider = self._providers.get(address)
        if provider is None:
            raise UnknownProviderError(f"No provider with address {address}")
        return provider

    def __iter__(self):
        return iter(list(self._providers.values()))

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.disconnect()

    async def __aenter__(self) -> ProviderManager:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    @rpc_method
    async def providers(self) -> dict[ProviderAddress, dict[str, Any]]:
        return {address: await p.info() for address, p in self._providers.items()}

    @rpc_method
    async def provider(self, address: ProviderAddress, msg: Any) -> Any:
        return await self[address].rpc_process(msg)

    @rpc_method
    async def delete(self, address: ProviderAddress) -> None:
        provider = self[address]
        await provider.disconnect()
        del self._providers[address]
