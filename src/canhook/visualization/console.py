"""Console-based visualization using Rich."""

from __future__ import annotations

import json
from typing import Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from canhook.capture.buffer import CaptureBuffer
from canhook.capture.types import MailboxItem
from canhook.replay.player import ReplayPlayer
from canhook.router.router import FleetSnapshot


class ConsoleVisualizer:
    """Renders providers, devices and captured traffic to the console."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def print_providers_table(self, snapshot: FleetSnapshot) -> None:
        table = Table(title="Providers")
        table.add_column("Address", style="cyan")
        table.add_column("Description")
        table.add_column("Status")
        table.add_column("Devices", justify="right")

        for address, info in sorted(snapshot.providers.items()):
            domains = snapshot.devices.get(address, {})
            table.add_row(
                address,
                info.description,
                "[green]connected[/green]" if info.connected else "[dim]disconnected[/dim]",
                str(sum(len(entries) for entries in domains.values())) if info.connected else "-",
            )

        self.console.print(table)

    def print_devices_table(self, snapshot: FleetSnapshot) -> None:
        table = Table(title="Devices")
        table.add_column("Provider", style="dim")
        table.add_column("Domain", style="dim")
        table.add_column("Device ID", style="cyan")
        table.add_column("Device")
        table.add_column("Class", style="magenta")
        table.add_column("Serial", justify="right")
        table.add_column("Firmware")

        for address, domain, listing in snapshot.listings():
            info = listing.info
            table.add_row(
                address,
                domain,
                str(listing.device_id),
                info.title(),
                listing.device_class,
                f"{info.serial:#010x}" if info.serial is not None else "-",
                info.firmware_version or "-",
            )

        self.console.print(table)

    def print_capture_table(self, items: Sequence[MailboxItem], title: str = "Captured Frames") -> None:
        """Print mailbox items, most recent first."""
        table = Table(title=title)
        table.add_column("#", style="dim", justify="right")
        table.add_column("Time", justify="right")
        table.add_column("Type", style="cyan")
        table.add_column("Manu", style="cyan")
        table.add_column("Class", style="cyan")
        table.add_column("Idx", style="cyan")
        table.add_column("Dev", style="cyan", justify="right")
        table.add_column("Data", style="green")
        table.add_column("Decoded")

        for item in items:
            msg_id = item.raw.id
            decoded = ""
            if item.decoded is not None:
                signals = ", ".join(f"{k}={v:g}" if isinstance(v, float) else f"{k}={v}"
                                    for k, v in item.decoded.get("signals", {}).items())
                decoded = f"[bold]{item.decoded.get('name')}[/bold] {signals}"
            table.add_row(
                str(item.seq),
                f"{item.raw.timestamp / 1000:.3f}s",
                f"{msg_id.device_type:02x}",
                f"{msg_id.manufacturer:02x}",
                f"{msg_id.api_class:02x}",
                f"{msg_id.api_index:02x}",
                str(msg_id.device_id),
                item.raw.hex_data(),
                decoded,
            )

        self.console.print(table)

    def print_capture_summary(self, buffer: CaptureBuffer) -> None:
        filters = ", ".join(json.dumps(f.to_wire()) for f in buffer.filters) or "none"
        panel = Panel(
            f"State: {buffer.state.value}\n"
            f"Total Captured: {buffer.total_captured}\n"
            f"Retained: {len(buffer.history)} / {buffer.max_history}\n"
            f"Cursor: {buffer.cursor}\n"
            f"Filters: {filters}",
            title="Capture Summary",
        )
        self.console.print(panel)

    def print_replay_summary(self, player: ReplayPlayer) -> None:
        panel = Panel(
            f"File: {player.name or '-'}\n"
            f"State: {player.state.value}\n"
            f"Frames: {player.index} / {player.total} sent\n"
            f"Duration: {player.duration_ms / 1000:.2f}s\n"
            f"Speed: {player.speed_factor:g}x",
            title="Replay Summary",
        )
        self.console.print(panel)
