"""End-to-end tests: router and clients driving the simulated host over the loopback transport."""

import asyncio
from typing import Optional

import pytest

from canhook.capture import CaptureBuffer
from canhook.config import CaptureConfig, HostConfig
from canhook.core.frame import CANFrame, MessageId
from canhook.core.model import DeviceId, DeviceInfo, DeviceType
from canhook.devices import CanLogClient, DfuClient, LaserCanClient, MitocandriaClient, OldVersionClient
from canhook.errors import TransportError
from canhook.host import (
    BridgeProvider,
    ProviderManager,
    SimulatedFlexiCan,
    SimulatedLaserCan,
    SimulatedMitocandria,
)
from canhook.replay import ReplayFrame, ReplayPlayer
from canhook.router import Router, UnsupportedDevice
from canhook.rpc import LoopbackTransport


ADDRESS = "sim://test"


@pytest.fixture
def lasercan() -> SimulatedLaserCan:
    return SimulatedLaserCan(0x1001, 1, period_ms=10, firmware_version="2024.2.1", name="front")


@pytest.fixture
def old_lasercan() -> SimulatedLaserCan:
    return SimulatedLaserCan(0x1002, 2, period_ms=10, firmware_version="2024.1.0", upgraded_version="2024.2.1")


@pytest.fixture
def mito() -> SimulatedMitocandria:
    return SimulatedMitocandria(0x2001, 3, period_ms=10)


@pytest.fixture
async def host(lasercan, old_lasercan, mito):
    bridge = BridgeProvider(ADDRESS, config=HostConfig(enumerate_interval=0.05))
    for peripheral in (lasercan, old_lasercan, mito, SimulatedFlexiCan(0x3001, 4)):
        bridge.add_peripheral(peripheral)
    manager = ProviderManager()
    manager.add_provider(bridge)
    async with manager:
        await bridge.connect()
        yield manager


@pytest.fixture
def bridge(host: ProviderManager) -> BridgeProvider:
    return host[ADDRESS]


@pytest.fixture
def router(host: ProviderManager, errors: list[Exception]) -> Router:
    return Router(LoopbackTransport(host), error_sink=errors.append)


async def open_device(router: Router, device_class: str, serial: Optional[int] = None):
    snapshot = await router.snapshot()
    for address, domain, listing in snapshot.listings():
        if listing.device_class == device_class and serial in (None, listing.info.serial):
            return router.open_device(address, domain, listing.device_id, listing.device_class, listing.info)
    raise AssertionError(f"no {device_class} listed")


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


class TestDiscovery:
    """Tests for the device listing seen through the router."""

    async def test_device_classes(self, router: Router) -> None:
        snapshot = await router.snapshot()

        classes = {listing.info.serial: listing.device_class for _, _, listing in snapshot.listings()}
        assert classes == {
            0x1001: "LaserCAN",
            0x1002: "OldVersionDevice",
            0x2001: "MitoCANdria",
            0x3001: "FlexiCAN",
            0xB0000001: "CANBridge",
        }

    async def test_names_reported(self, router: Router) -> None:
        client = await open_device(router, "LaserCAN")

        assert client.info.name == "front"
        assert client.description == "LaserCan #1 (front)"

    async def test_unsupported_model(self, router: Router) -> None:
        client = await open_device(router, "FlexiCAN")

        assert isinstance(client, UnsupportedDevice)
        assert client.description == "Unknown Device Type: FlexiCAN (FlexiCAN)"

    async def test_unknown_device(self, router: Router) -> None:
        client = router.open_device(
            ADDRESS, "canbus", DeviceId.of_serial(0xDEAD), "LaserCAN", DeviceInfo(DeviceType.grapple("LaserCan"))
        )

        with pytest.raises(TransportError, match=r"No device with ID Serial\(0xdead\)"):
            await client.status()


class TestLaserCan:
    """Tests for LaserCAN status and configuration."""

    async def test_status(self, router: Router) -> None:
        client = await open_device(router, "LaserCAN")
        assert isinstance(client, LaserCanClient)

        await asyncio.sleep(0.05)
        measurement = await client.status()

        assert measurement is not None
        assert measurement.mode == "Short"
        assert measurement.budget == "TB33ms"
        assert measurement.roi.w == 16

    async def test_set_range_round_trip(self, router: Router, lasercan: SimulatedLaserCan) -> None:
        """Test a config request is acknowledged and later reflected in the status."""
        client = await open_device(router, "LaserCAN")

        await client.set_range("Long")
        await client.set_timing_budget("TB100ms")

        assert lasercan.mode == "Long"
        assert lasercan.budget == "TB100ms"
        await asyncio.sleep(0.05)
        measurement = await client.status()
        assert (measurement.mode, measurement.budget) == ("Long", "TB100ms")

    async def test_silent_device_times_out(self, router: Router, lasercan: SimulatedLaserCan) -> None:
        lasercan.ack_requests = False
        client = await open_device(router, "LaserCAN")

        with pytest.raises(TransportError, match="Timed out waiting for response"):
            await client.set_range("Long")

    async def test_generic_operations(self, router: Router, bridge: BridgeProvider, lasercan) -> None:
        client = await open_device(router, "LaserCAN")

        await client.generic.blink()
        await client.generic.set_name("rear")
        await client.generic.commit_to_eeprom()
        await bridge.bus.drain()

        assert lasercan.blink_count == 1
        assert lasercan.device_name == "rear"
        assert lasercan.committed

    async def test_set_id_reflected_in_listing(self, router: Router, bridge: BridgeProvider, lasercan) -> None:
        client = await open_device(router, "LaserCAN")

        await client.generic.set_id(9)
        await bridge.bus.drain()
        await bridge.enumerate()

        client = await open_device(router, "LaserCAN")
        assert lasercan.device_id == 9
        assert client.info.device_id == 9


class TestFirmware:
    """Tests for out-of-date devices and the field upgrade."""

    async def test_old_version_error(self, router: Router) -> None:
        client = await open_device(router, "OldVersionDevice")
        assert isinstance(client, OldVersionClient)

        error = await client.get_error()

        assert "2024.1.0" in error
        assert ">= 2024.2.0, < 2024.3.0" in error
        assert (await client.get_firmware_url()).startswith("https://")

    async def test_field_upgrade(self, router: Router, bridge: BridgeProvider, old_lasercan) -> None:
        """Test bootloader entry, image upload and reclassification after the upgrade."""
        client = await open_device(router, "OldVersionDevice")

        await client.firmware.start_field_upgrade()
        await bridge.bus.drain()
        await bridge.enumerate()
        dfu = await open_device(router, "FirmwareUpdate")
        assert isinstance(dfu, DfuClient)
        assert dfu.info.is_dfu

        await dfu.firmware.do_field_upgrade(bytes(range(20)))
        await wait_for(lambda: not old_lasercan.is_dfu)
        await bridge.enumerate()

        assert bytes(old_lasercan.firmware_image) == bytes(range(20)) + bytes(4)
        upgraded = await open_device(router, "LaserCAN", serial=0x1002)
        assert upgraded.info.firmware_version == "2024.2.1"


class TestMitocandria:
    """Tests for the power distribution module."""

    async def test_status_and_switch(self, router: Router, mito: SimulatedMitocandria) -> None:
        client = await open_device(router, "MitoCANdria")
        assert isinstance(client, MitocandriaClient)

        await client.set_switchable_channel(2, False)
        await asyncio.sleep(0.05)
        channels = await client.status()

        assert not mito.channels[2].enabled
        assert len(channels) == 5
        assert not channels[2].enabled
        assert channels[4].kind == "Adjustable"

    async def test_rejected_request(self, router: Router) -> None:
        client = await open_device(router, "MitoCANdria")

        with pytest.raises(TransportError, match=r"Device rejected the request \(code 3\)"):
            await client.set_switchable_channel(0, False)

    async def test_adjustable(self, router: Router, mito: SimulatedMitocandria) -> None:
        client = await open_device(router, "MitoCANdria")

        await client.set_adjustable_channel(4, 20.5)

        assert mito.channels[4].voltage_setpoint == 20500


class TestCaptureAndReplay:
    """Tests for capture through the bridge and replay back onto the bus."""

    async def test_capture(self, router: Router) -> None:
        canlog = await open_device(router, "CANBridge")
        assert isinstance(canlog, CanLogClient)
        buffer = CaptureBuffer(canlog, CaptureConfig(poll_interval=0.01))

        await buffer.set_log_enabled(True)
        await asyncio.sleep(0.1)
        await buffer.set_log_enabled(False)

        names = {item.decoded["name"] for item in buffer.history if item.decoded}
        seqs = [item.seq for item in buffer.history]
        assert "LaserCanMeasurement" in names
        assert "MitocandriaChannelStatus" in names
        assert seqs == sorted(seqs, reverse=True)
        assert seqs[-1] == 1

    async def test_send_raw_is_captured(self, router: Router, bridge: BridgeProvider) -> None:
        canlog = await open_device(router, "CANBridge")
        await canlog.set_log_enabled(True)

        await canlog.send_raw(MessageId(2, 5, 1, 3, 7), b"\xca\xfe")
        await bridge.bus.drain()

        items = [item for item in await canlog.read_after(0) if item.raw.id.manufacturer == 5]
        assert [item.raw.data for item in items] == [b"\xca\xfe"]
        assert items[0].decoded is None

    async def test_one_item_per_frame(self, router: Router, bridge: BridgeProvider) -> None:
        """Test each frame on the bus takes exactly one sequence number."""
        canlog = await open_device(router, "CANBridge")
        await canlog.set_log_enabled(True)

        for i in range(3):
            await canlog.send_raw(MessageId(2, 5, 1, 3, 7), bytes([i]))
        await bridge.bus.drain()
        await canlog.set_log_enabled(False)

        items = await canlog.read_after(0)
        seqs = [item.seq for item in items]
        assert seqs == list(range(1, len(items) + 1))
        assert [item.raw.data for item in items if item.raw.id.manufacturer == 5] == [b"\x00", b"\x01", b"\x02"]

    async def test_replay_onto_bus(self, router: Router, bridge: BridgeProvider) -> None:
        """Test a loaded file is transmitted through the bridge in order."""
        canlog = await open_device(router, "CANBridge")
        seen: list[CANFrame] = []
        bridge.bus.add_observer(seen.append)
        player = ReplayPlayer(canlog.send_raw)
        player.load([ReplayFrame(t, MessageId(2, 5, 1, 3, i), bytes([i])) for i, t in enumerate((0, 10, 20))])

        player.play()
        await asyncio.wait_for(player.wait_settled(), timeout=2.0)
        await bridge.bus.drain()
        await player.close()

        assert [f.data for f in seen if f.id.manufacturer == 5] == [b"\x00", b"\x01", b"\x02"]
