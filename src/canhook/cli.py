"""Command-line interface for canhook."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import AsyncIterator, Optional

import click
from rich.console import Console

from canhook import __version__
from canhook.capture import CaptureBuffer, export_csv, export_json, parse_filter
from canhook.config import CaptureConfig, HostConfig, PollingConfig, ReplayConfig
from canhook.core.model import DeviceListing
from canhook.devices import CanLogClient, DfuClient, LaserCanClient, MitocandriaClient, OldVersionClient
from canhook.errors import CanHookError
from canhook.host import DEMO_ADDRESS, ProviderManager, build_demo_host
from canhook.log import configure_logging
from canhook.polling import Poller
from canhook.replay import ReplayPlayer, ReplayState, read_replay_csv
from canhook.router import FleetSnapshot, Router
from canhook.rpc import LoopbackTransport
from canhook.visualization import ConsoleVisualizer


console = Console()

LOGGER = logging.getLogger(__name__)


def _report(exc: Exception) -> None:
    console.print(f"[red]{exc}[/red]")


@contextlib.asynccontextmanager
async def _demo_fleet(config: Optional[HostConfig] = None) -> AsyncIterator[tuple[ProviderManager, Router]]:
    """Start the simulated host, connect its bridge and yield a router over it."""
    host = build_demo_host(config)
    router = Router(LoopbackTransport(host), error_sink=_report)
    async with host:
        await router.provider(DEMO_ADDRESS).connect()
        yield host, router


def _find(snapshot: FleetSnapshot, device_class: str) -> Optional[tuple[str, str, DeviceListing]]:
    for address, domain, listing in snapshot.listings():
        if listing.device_class == device_class:
            return address, domain, listing
    return None


async def _open(router: Router, snapshot: FleetSnapshot, device_class: str):
    found = _find(snapshot, device_class)
    if found is None:
        raise click.ClickException(f"No {device_class} device found")
    address, domain, listing = found
    return router.open_device(address, domain, listing.device_id, listing.device_class, listing.info)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", count=True, help="Increase log verbosity")
def main(verbose: int) -> None:
    """canhook - CAN device fleet management, capture and replay."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    configure_logging(level, console)


@main.command()
def providers() -> None:
    """List the simulated providers and the devices they report."""
    asyncio.run(_run_providers())


async def _run_providers() -> None:
    visualizer = ConsoleVisualizer(console)
    async with _demo_fleet() as (_host, router):
        snapshot = await router.snapshot()
    visualizer.print_providers_table(snapshot)
    visualizer.print_devices_table(snapshot)


@main.command()
@click.option("--duration", "-d", default=2.0, help="Capture duration in seconds")
@click.option("--max-history", default=4096, help="Maximum number of frames kept")
@click.option("--filter", "-f", "filters", multiple=True,
              help="Filter: 'decoded', 'mask:ID/MASK' or 'size:MIN-MAX' (repeatable)")
@click.option("--show", default=20, help="Number of frames to print")
@click.option("--csv", "csv_path", type=click.Path(dir_okay=False), help="Export the capture as CSV")
@click.option("--json", "json_path", type=click.Path(dir_okay=False), help="Export the capture as JSON")
def capture(
    duration: float,
    max_history: int,
    filters: tuple[str, ...],
    show: int,
    csv_path: Optional[str],
    json_path: Optional[str],
) -> None:
    """Capture traffic from the simulated bridge."""
    try:
        parsed = [parse_filter(f) for f in filters]
        config = CaptureConfig(max_history=max_history, max_display=show)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    console.print(f"[bold]Capturing[/bold] for {duration}s")

    asyncio.run(_run_capture(duration, config, parsed, csv_path, json_path))


async def _run_capture(duration, config, filters, csv_path, json_path) -> None:
    visualizer = ConsoleVisualizer(console)
    async with _demo_fleet() as (_host, router):
        canlog: CanLogClient = await _open(router, await router.snapshot(), "CANBridge")
        buffer = CaptureBuffer(canlog, config, error_sink=_report)
        await buffer.set_filters(filters)
        await buffer.set_log_enabled(True)
        await asyncio.sleep(duration)
        await buffer.poll_once()
        await buffer.set_log_enabled(False)
        await buffer.close()

    visualizer.print_capture_table(buffer.visible())
    visualizer.print_capture_summary(buffer)

    if csv_path:
        count = export_csv(buffer.history, Path(csv_path))
        console.print(f"Saved {count} frames to: {csv_path}")
    if json_path:
        export_json(buffer.history, buffer.filters, Path(json_path))
        console.print(f"Saved {len(buffer.history)} frames to: {json_path}")


@main.command()
@click.argument("replay_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--speed", "-s", default=1.0, help="Playback speed factor")
def replay(replay_file: str, speed: float) -> None:
    """Replay a CSV capture onto the simulated bus."""
    try:
        config = ReplayConfig(speed_factor=speed)
        frames = read_replay_csv(Path(replay_file))
    except (ValueError, CanHookError) as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[bold]Replaying[/bold] {replay_file} at {speed}x speed")

    asyncio.run(_run_replay(Path(replay_file).name, frames, config))


async def _run_replay(name, frames, config: ReplayConfig) -> None:
    visualizer = ConsoleVisualizer(console)
    async with _demo_fleet() as (_host, router):
        canlog: CanLogClient = await _open(router, await router.snapshot(), "CANBridge")
        player = ReplayPlayer(canlog.send_raw, config=config, error_sink=_report)
        player.load(frames, name)
        player.play()

        while player.state is ReplayState.RUNNING:
            console.print(f"\rProgress: {player.index}/{player.total}", end="")
            await asyncio.sleep(0.1)
        await player.wait_settled()
        await player.close()

    console.print("\n[bold]Replay Complete[/bold]" if player.remaining == 0 else "\n[yellow]Replay paused[/yellow]")
    visualizer.print_replay_summary(player)


async def _wait_for_listing(router: Router, predicate, interval: float, timeout: float = 5.0):
    """Poll the device listing until ``predicate`` matches an entry, then open it."""
    found: asyncio.Future = asyncio.get_running_loop().create_future()

    def check(snapshot: FleetSnapshot) -> None:
        for address, domain, listing in snapshot.listings():
            if predicate(listing) and not found.done():
                found.set_result(router.open_device(
                    address, domain, listing.device_id, listing.device_class, listing.info
                ))

    async with Poller(router.snapshot, interval, on_result=check, error_sink=_report, name="devices"):
        try:
            return await asyncio.wait_for(found, timeout)
        except asyncio.TimeoutError:
            raise click.ClickException("Timed out waiting for the device list to change") from None


async def _upgrade(router: Router, old: OldVersionClient, polling: PollingConfig) -> None:
    serial = old.info.serial
    await old.firmware.start_field_upgrade()
    dfu: DfuClient = await _wait_for_listing(
        router, lambda entry: entry.info.is_dfu and entry.info.serial == serial, polling.devices_interval
    )
    console.print(f"{dfu.description} entered its bootloader")

    async def upload_progress() -> Optional[float]:
        # The bootloader entry goes away once the device reboots.
        snapshot = await router.snapshot()
        if not any(entry.info.is_dfu for _, _, entry in snapshot.listings()):
            return None
        return await dfu.firmware.progress()

    finished = asyncio.Event()
    polls = 0

    def show(value: Optional[float]) -> None:
        nonlocal polls
        polls += 1
        if value is not None:
            console.print(f"\rUploading: {value:.0f}%", end="")
        elif polls > 1:
            finished.set()

    await dfu.firmware.do_field_upgrade(bytes(range(256)) * 4)
    async with Poller(upload_progress, polling.progress_interval, on_result=show,
                      error_sink=_report, name="firmware progress"):
        try:
            await asyncio.wait_for(finished.wait(), timeout=10.0)
        except asyncio.TimeoutError:
            raise click.ClickException("Firmware upload did not finish") from None

    upgraded = await _wait_for_listing(
        router,
        lambda entry: entry.device_class == "LaserCAN" and entry.info.serial == serial,
        polling.devices_interval,
    )
    console.print(f"\n[green]{upgraded.description} now runs {upgraded.info.firmware_version}[/green]")


@main.command()
def demo() -> None:
    """Walk through the simulated fleet: discovery, status, config, capture and a firmware upgrade."""
    console.print("[bold cyan]canhook Demo[/bold cyan]\n")

    asyncio.run(_run_demo())


async def _run_demo() -> None:
    visualizer = ConsoleVisualizer(console)
    polling = PollingConfig()
    async with _demo_fleet() as (_host, router):
        console.print("[bold]1. Discovering devices[/bold]")
        snapshot = await router.snapshot()
        visualizer.print_devices_table(snapshot)

        console.print("[bold]2. Capturing while configuring[/bold]")
        canlog: CanLogClient = await _open(router, snapshot, "CANBridge")
        buffer = CaptureBuffer(canlog, CaptureConfig(max_display=15), error_sink=_report)
        await buffer.set_log_enabled(True)

        lasercan: LaserCanClient = await _open(router, snapshot, "LaserCAN")
        mito: MitocandriaClient = await _open(router, snapshot, "MitoCANdria")
        range_status = Poller(lasercan.status, polling.status_interval, error_sink=_report, name="LaserCAN status")
        power_status = Poller(mito.status, polling.status_interval, error_sink=_report, name="MitoCANdria status")

        async with range_status, power_status:
            await lasercan.set_range("Long")
            await lasercan.generic.blink()
            await mito.set_switchable_channel(2, False)
            await asyncio.sleep(0.3)

        measurement = range_status.latest
        if measurement is not None:
            console.print(f"{lasercan.description}: {measurement.distance_mm} mm ({measurement.mode})")
        for i, channel in enumerate(power_status.latest or []):
            console.print(f"{mito.description} ch{i}: {channel.kind} {channel.voltage / 1000:.1f} V")

        await buffer.poll_once()
        await buffer.set_log_enabled(False)
        await buffer.close()

        console.print("[bold]3. Upgrading out-of-date firmware[/bold]")
        old: OldVersionClient = await _open(router, snapshot, "OldVersionDevice")
        console.print(f"[yellow]{old.description}: {await old.get_error()}[/yellow]")
        await _upgrade(router, old, polling)

    console.print("\n[bold]4. Results[/bold]")
    visualizer.print_capture_table(buffer.visible())
    visualizer.print_capture_summary(buffer)
    console.print("\n[green]Demo complete![/green]")


if __name__ == "__main__":
    main()
