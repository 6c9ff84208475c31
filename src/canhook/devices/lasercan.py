"""LaserCAN time-of-flight distance sensor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from canhook.devices.base import GrappleDeviceClient, decode_response
from canhook.errors import ValidationError
from canhook.rpc.protocols import LASERCAN


RANGING_MODES = ("Short", "Long")
TIMING_BUDGETS = ("TB20ms", "TB33ms", "TB50ms", "TB100ms")


def _is_integral(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and float(value).is_integer()


@dataclass(frozen=True)
class LaserCanRoi:
    """Region of interest on the sensor's SPAD array, centred on (x, y)."""

    x: float
    y: float
    w: float
    h: float

    def validate(self) -> None:
        """A valid ROI is centred on whole numbers, has even sides and is at least 4x4."""
        if not (_is_integral(self.x) and _is_integral(self.y)):
            raise ValidationError(f"ROI must be centred on a whole number, got ({self.x}, {self.y})")
        if not (_is_integral(self.w) and _is_integral(self.h)) or self.w % 2 or self.h % 2:
            raise ValidationError(f"ROI width and height must be even, got {self.w}x{self.h}")
        if self.w < 4 or self.h < 4:
            raise ValidationError(f"ROI must be at least 4x4, got {self.w}x{self.h}")

    def to_dict(self) -> dict[str, int]:
        return {"x": int(self.x), "y": int(self.y), "w": int(self.w), "h": int(self.h)}

    @staticmethod
    def from_dict(d: dict[str, Any]) -> LaserCanRoi:
        return LaserCanRoi(x=d["x"], y=d["y"], w=d["w"], h=d["h"])


@dataclass(frozen=True)
class LaserCanMeasurement:
    status: int
    distance_mm: int
    ambient: int
    mode: str
    budget: str
    roi: LaserCanRoi

    @staticmethod
    def from_dict(d: dict[str, Any]) -> LaserCanMeasurement:
        return LaserCanMeasurement(
            status=int(d["status"]),
            distance_mm=int(d["distance_mm"]),
            ambient=int(d["ambient"]),
            mode=str(d["mode"]),
            budget=str(d["budget"]),
            roi=LaserCanRoi.from_dict(d["roi"]),
        )


def _measurement(data: Any) -> Optional[LaserCanMeasurement]:
    last = (data or {}).get("last_update")
    return None if last is None else LaserCanMeasurement.from_dict(last)


class LaserCanClient(GrappleDeviceClient):
    """Distance sensor: live measurement plus ranging configuration."""

    device_class = "LaserCAN"
    spec = LASERCAN

    async def status(self) -> Optional[LaserCanMeasurement]:
        """Most recent measurement, or None before the first one arrives."""
        data = await self._rpc.call("status")
        return decode_response("status", _measurement, data)

    async def set_range(self, mode: str) -> None:
        if mode not in RANGING_MODES:
            raise ValidationError(f"Ranging mode must be one of {RANGING_MODES}, got {mode!r}")
        await self._rpc.call("set_range", mode=mode)

    async def set_roi(self, roi: LaserCanRoi) -> None:
        roi.validate()
        await self._rpc.call("set_roi", roi=roi.to_dict())

    async def set_timing_budget(self, budget: str) -> None:
        if budget not in TIMING_BUDGETS:
            raise ValidationError(f"Timing budget must be one of {TIMING_BUDGETS}, got {budget!r}")
        await self._rpc.call("set_timing_budget", budget=budget)
