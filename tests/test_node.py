"""Tests for the simulated vendor peripherals and their message vocabulary."""

import asyncio

import pytest

from canhook.core.frame import DEVICE_ID_BROADCAST, CANFrame
from canhook.host import grapple as g
from canhook.host.bus import VirtualCANBus
from canhook.host.decoder import FrameDecoder
from canhook.host.node import SimulatedLaserCan, SimulatedMitocandria, SimulatedPeripheral


def device_info(api_index: int, data: bytes = b"") -> CANFrame:
    return g.grapple_frame(g.DEVICE_TYPE_BROADCAST, g.API_DEVICE_INFO, api_index, DEVICE_ID_BROADCAST, data)


def config(device_type: int, api_index: int, device_id: int, data: bytes) -> CANFrame:
    return g.grapple_frame(device_type, g.API_CONFIG, api_index, device_id, data)


@pytest.fixture
async def bus():
    bus = VirtualCANBus("test_bus")
    async with bus:
        yield bus


@pytest.fixture
def traffic(bus: VirtualCANBus) -> list[CANFrame]:
    frames: list[CANFrame] = []
    bus.add_observer(frames.append)
    return frames


async def send(bus: VirtualCANBus, frame: CANFrame) -> None:
    await bus.transmit(frame)
    await bus.drain()


def replies(traffic: list[CANFrame], api_index: int) -> list[CANFrame]:
    return [f for f in traffic if g.matches(f.id, g.DEVICE_TYPE_BROADCAST, g.API_DEVICE_INFO, api_index)]


class TestIdentification:
    """Tests for enumeration and the broadcast device-info messages."""

    @pytest.fixture
    def peripheral(self, bus: VirtualCANBus) -> SimulatedPeripheral:
        peripheral = SimulatedLaserCan(0x1001, 1, firmware_version="2024.2.1", name="front")
        peripheral.attach(bus)
        return peripheral

    async def test_announce_on_enumerate(self, bus, peripheral, traffic) -> None:
        """Test an enumerate request is answered with the model, version and name."""
        await send(bus, device_info(g.IDX_ENUMERATE_REQUEST))

        responses = replies(traffic, g.IDX_ENUMERATE_RESPONSE)
        assert len(responses) == 1
        assert responses[0].id.device_id == 1
        decoded = g.EnumerateResponse.decode(responses[0].data)
        assert decoded == g.EnumerateResponse(0x1001, "LaserCan", "2024.2.1")

        assembler = g.NameAssembler()
        names = [assembler.feed(f.data) for f in replies(traffic, g.IDX_NAME_REPORT)]
        assert names[-1] == (0x1001, "front")

    async def test_blink_matches_serial(self, bus, peripheral) -> None:
        await send(bus, device_info(g.IDX_BLINK, g.serial_payload(0x1001)))
        await send(bus, device_info(g.IDX_BLINK, g.serial_payload(0x9999)))

        assert peripheral.blink_count == 1

    async def test_set_id(self, bus, peripheral) -> None:
        await send(bus, device_info(g.IDX_SET_ID, g.serial_payload(0x1001, 12)))
        assert peripheral.device_id == 12

        await send(bus, device_info(g.IDX_SET_ID, g.serial_payload(0x1001, DEVICE_ID_BROADCAST)))
        assert peripheral.device_id == 12

    async def test_set_name_and_commit(self, bus, peripheral) -> None:
        for fragment in g.name_fragments(0x1001, "rear-left"):
            await send(bus, device_info(g.IDX_SET_NAME, fragment))
        await send(bus, device_info(g.IDX_COMMIT, g.serial_payload(0x1001)))

        assert peripheral.device_name == "rear-left"
        assert peripheral.committed

    async def test_detached_transmit(self) -> None:
        peripheral = SimulatedPeripheral(1, 1)

        assert not peripheral.is_connected
        assert not await peripheral.transmit(device_info(g.IDX_ENUMERATE_REQUEST))


class TestLaserCan:
    """Tests for the simulated distance sensor."""

    @pytest.fixture
    def lasercan(self, bus: VirtualCANBus) -> SimulatedLaserCan:
        lasercan = SimulatedLaserCan(0x1001, 1, period_ms=10)
        lasercan.attach(bus)
        return lasercan

    async def test_set_range_acked(self, bus, lasercan, traffic) -> None:
        await send(bus, config(g.DEVICE_TYPE_DISTANCE_SENSOR, g.IDX_SET_RANGE, 1, b"\x01"))

        acks = [f for f in traffic if f.id.api_index == g.IDX_SET_RANGE | g.ACK_FLAG]
        assert lasercan.mode == "Long"
        assert [a.data for a in acks] == [b"\x00"]

    async def test_invalid_roi_rejected(self, bus, lasercan, traffic) -> None:
        await send(bus, config(g.DEVICE_TYPE_DISTANCE_SENSOR, g.IDX_SET_ROI, 1, g.encode_roi(8, 8, 3, 4)))

        acks = [f for f in traffic if f.id.api_index == g.IDX_SET_ROI | g.ACK_FLAG]
        assert [a.data for a in acks] == [b"\x01"]
        assert lasercan.roi == {"x": 8, "y": 8, "w": 16, "h": 16}

    async def test_other_device_id_ignored(self, bus, lasercan, traffic) -> None:
        await send(bus, config(g.DEVICE_TYPE_DISTANCE_SENSOR, g.IDX_SET_RANGE, 2, b"\x01"))

        assert lasercan.mode == "Short"
        assert len(traffic) == 1

    async def test_silent_when_not_acking(self, bus, traffic) -> None:
        lasercan = SimulatedLaserCan(0x1001, 1, ack_requests=False)
        lasercan.attach(bus)

        await send(bus, config(g.DEVICE_TYPE_DISTANCE_SENSOR, g.IDX_SET_TIMING_BUDGET, 1, b"\x32"))

        assert lasercan.budget == "TB50ms"
        assert len(traffic) == 1

    async def test_periodic_status(self, bus, lasercan, traffic) -> None:
        """Test status frames are sent periodically and decode to the current settings."""
        async with lasercan:
            await asyncio.sleep(0.05)

        measurements = [f for f in traffic if f.id.api_index == g.IDX_MEASUREMENT]
        assert len(measurements) >= 2
        status = g.decode_measurement(measurements[0].data)
        assert status["mode"] == "Short"
        assert status["budget"] == "TB33ms"

    async def test_firmware_update(self, bus, lasercan, traffic) -> None:
        """Test the bootloader accepts parts, acks each and applies the new version."""
        lasercan.upgraded_version = "2024.2.3"
        fw = g.DEVICE_TYPE_FIRMWARE

        await send(bus, g.grapple_frame(fw, g.API_FIRMWARE, g.IDX_START_FIELD_UPGRADE, DEVICE_ID_BROADCAST,
                                        g.serial_payload(0x1001)))
        assert lasercan.is_dfu

        await send(bus, g.grapple_frame(fw, g.API_FIRMWARE, g.IDX_UPDATE_PART, 1, bytes(range(8))))
        await send(bus, g.grapple_frame(fw, g.API_FIRMWARE, g.IDX_UPDATE_PART, 1, bytes(range(8, 16))))
        await send(bus, g.grapple_frame(fw, g.API_FIRMWARE, g.IDX_UPDATE_DONE, 1))

        acks = [f for f in traffic if f.id.device_type == fw and f.id.api_index == g.IDX_UPDATE_PART_ACK]
        assert len(acks) == 2
        assert bytes(lasercan.firmware_image) == bytes(range(16))
        assert not lasercan.is_dfu
        assert lasercan.firmware_version == "2024.2.3"

    async def test_no_config_in_bootloader(self, bus, lasercan) -> None:
        lasercan.is_dfu = True

        await send(bus, config(g.DEVICE_TYPE_DISTANCE_SENSOR, g.IDX_SET_RANGE, 1, b"\x01"))

        assert lasercan.mode == "Short"


class TestMitocandria:
    """Tests for the simulated power distribution module."""

    @pytest.fixture
    def mito(self, bus: VirtualCANBus) -> SimulatedMitocandria:
        mito = SimulatedMitocandria(0x2001, 3)
        mito.attach(bus)
        return mito

    @staticmethod
    def codes(traffic: list[CANFrame]) -> list[int]:
        return [f.data[0] for f in traffic if f.id.api_index & g.ACK_FLAG]

    async def test_switch_channel(self, bus, mito, traffic) -> None:
        await send(bus, config(g.DEVICE_TYPE_POWER_DISTRIBUTION, g.IDX_SET_SWITCHABLE, 3, bytes([2, 0])))

        assert not mito.channels[2].enabled
        assert mito.channels[2].voltage == 0
        assert self.codes(traffic) == [0]

    async def test_rejections(self, bus, mito, traffic) -> None:
        """Test a wrong channel kind and a missing channel are refused with distinct codes."""
        pdm = g.DEVICE_TYPE_POWER_DISTRIBUTION
        await send(bus, config(pdm, g.IDX_SET_SWITCHABLE, 3, bytes([0, 0])))
        await send(bus, config(pdm, g.IDX_SET_SWITCHABLE, 3, bytes([9, 0])))
        await send(bus, config(pdm, g.IDX_SET_ADJUSTABLE, 3, bytes([2]) + (20000).to_bytes(2, "little")))

        assert self.codes(traffic) == [3, 2, 3]
        assert mito.channels[0].enabled

    async def test_adjustable_voltage(self, bus, mito) -> None:
        await send(bus, config(g.DEVICE_TYPE_POWER_DISTRIBUTION, g.IDX_SET_ADJUSTABLE, 3,
                               bytes([4]) + (22500).to_bytes(2, "little")))

        assert mito.channels[4].voltage_setpoint == 22500

    def test_status_frames(self, mito) -> None:
        frames = mito.status_frames()

        channel, status = g.decode_channel_status(frames[4].data)
        assert len(frames) == 5
        assert channel == 4
        assert status == {"type": "Adjustable", "data": {
            "enabled": True, "current": 1500, "voltage": 18000, "voltage_setpoint": 18000,
        }}


class TestVocabulary:
    """Tests for the vendor message helpers and frame decoder."""

    def test_version_packing(self) -> None:
        assert g.unpack_version(g.pack_version("2024.2.1")) == "2024.2.1"
        with pytest.raises(ValueError):
            g.pack_version("2024.2")

    def test_version_range(self) -> None:
        supported = g.VersionRange("2024.2.0", "2024.3.0")

        assert supported.contains("2024.2.0")
        assert supported.contains("2024.2.15")
        assert not supported.contains("2024.3.0")
        assert not supported.contains("garbage")
        assert not supported.contains(None)
        assert str(supported) == ">= 2024.2.0, < 2024.3.0"

    def test_empty_name(self) -> None:
        (fragment,) = g.name_fragments(5, "")

        assert g.NameAssembler().feed(fragment) == (5, "")

    def test_decoder(self) -> None:
        decoder = FrameDecoder()
        frame = g.grapple_frame(g.DEVICE_TYPE_POWER_DISTRIBUTION, g.API_STATUS, g.IDX_CHANNEL_STATUS, 3,
                                g.encode_channel_status(1, "Switchable", True, 800, 5000, 5000))

        decoded = decoder.decode(frame)

        assert decoded["name"] == "MitocandriaChannelStatus"
        assert decoded["device_id"] == 3
        assert decoded["signals"]["current"] == pytest.approx(0.8)
        assert decoded["signals"]["voltage"] == pytest.approx(5.0)

    def test_decoder_unknown(self) -> None:
        decoder = FrameDecoder()
        frame = g.grapple_frame(12, 3, 3, 1)

        assert decoder.decode(frame) is None
        assert len(decoder.unknown_keys) == 1
