"""MitoCANdria power distribution module."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from canhook.devices.base import GrappleDeviceClient, decode_response
from canhook.errors import ValidationError
from canhook.rpc.protocols import MITOCANDRIA


ADJUSTABLE_VOLTAGE_MIN = 15.0
ADJUSTABLE_VOLTAGE_MAX = 24.0
CHANNEL_TYPES = ("NonSwitchable", "Switchable", "Adjustable")


@dataclass(frozen=True)
class MitocandriaChannel:
    """One output channel. Currents and voltages are in milli-units."""

    kind: str
    enabled: bool
    current: int
    voltage: int
    voltage_setpoint: int

    @property
    def switchable(self) -> bool:
        return self.kind in ("Switchable", "Adjustable")

    @staticmethod
    def from_dict(d: dict[str, Any]) -> MitocandriaChannel:
        data = d["data"]
        return MitocandriaChannel(
            kind=str(d["type"]),
            enabled=bool(data["enabled"]),
            current=int(data["current"]),
            voltage=int(data["voltage"]),
            voltage_setpoint=int(data["voltage_setpoint"]),
        )


def _check_channel(channel: Any) -> int:
    if isinstance(channel, bool) or not isinstance(channel, int) or channel < 0:
        raise ValidationError(f"Channel must be a non-negative integer, got {channel!r}")
    return channel


def _channels(data: Any) -> Optional[list[MitocandriaChannel]]:
    last = (data or {}).get("last_update")
    if last is None:
        return None
    return [MitocandriaChannel.from_dict(c) for c in last["channels"]]


class MitocandriaClient(GrappleDeviceClient):
    device_class = "MitoCANdria"
    spec = MITOCANDRIA

    async def status(self) -> Optional[list[MitocandriaChannel]]:
        """Channel readings from the latest status frames, or None if none arrived yet."""
        data = await self._rpc.call("status")
        return decode_response("status", _channels, data)

    async def set_switchable_channel(self, channel: int, enabled: bool) -> None:
        await self._rpc.call(
            "set_switchable_channel",
            channel={"channel": _check_channel(channel), "enabled": bool(enabled)},
        )

    async def set_adjustable_channel(self, channel: int, voltage: float) -> None:
        """Set an adjustable channel's output voltage, in volts."""
        if not (ADJUSTABLE_VOLTAGE_MIN <= voltage <= ADJUSTABLE_VOLTAGE_MAX):
            raise ValidationError(
                f"The new voltage must be between {ADJUSTABLE_VOLTAGE_MIN:g}V and "
                f"{ADJUSTABLE_VOLTAGE_MAX:g}V, got {voltage:g}V"
            )
        await self._rpc.call(
            "set_adjustable_channel",
            channel={"channel": _check_channel(channel), "voltage": int(round(voltage * 1000))},
        )
