"""Runtime configuration."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CaptureConfig:
    """Configuration for a live capture mirror.

    Attributes:
        enabled: Whether capture may be switched on at all (debug gating).
        max_history: Maximum number of frames retained in the local mirror.
        max_display: Number of most recent frames shown by console views.
        poll_interval: Seconds between ``read_after`` polls while running.
    """

    enabled: bool = True
    max_history: int = 4096
    max_display: int = 128
    poll_interval: float = 0.05

    def __post_init__(self) -> None:
        if self.max_history < 1:
            raise ValueError(f"max_history must be >= 1, got {self.max_history}")
        if self.max_display < 0:
            raise ValueError(f"max_display must be >= 0, got {self.max_display}")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")


@dataclass
class ReplayConfig:
    """Configuration for replaying an imported capture."""

    speed_factor: float = 1.0

    def __post_init__(self) -> None:
        if self.speed_factor <= 0:
            raise ValueError("Speed factor must be positive")


@dataclass
class PollingConfig:
    """Intervals (seconds) for the independent view pollers."""

    status_interval: float = 0.05
    devices_interval: float = 0.5
    progress_interval: float = 0.25

    def __post_init__(self) -> None:
        for name in ("status_interval", "devices_interval", "progress_interval"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


@dataclass
class HostConfig:
    """Configuration for the simulated host environment."""

    mailbox_size: int = 512
    domains: list[str] = field(default_factory=lambda: ["canbus"])
    device_max_age: float = 4.0
    enumerate_interval: float = 0.5

    def __post_init__(self) -> None:
        if self.mailbox_size < 2:
            raise ValueError(f"mailbox_size must be >= 2, got {self.mailbox_size}")
        if not self.domains:
            raise ValueError("at least one domain is required")
