"""Client for a generic CAN pass-through device and its capture mailbox."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from canhook.capture.types import Filter, MailboxItem
from canhook.core.frame import CAN_CLASSIC_MAX_DLC, MessageId
from canhook.devices.base import DeviceClient, decode_response
from canhook.errors import ValidationError
from canhook.rpc.protocols import CAN_BRIDGE


LOGGER = logging.getLogger(__name__)


def _mailbox_items(items: Any) -> list[MailboxItem]:
    return [MailboxItem.from_dict(item) for item in items or []]


class CanLogClient(DeviceClient):
    """Capture mailbox and raw transmit of a CAN bridge."""

    device_class = "CANBridge"
    spec = CAN_BRIDGE

    async def set_log_enabled(self, enabled: bool) -> None:
        await self._rpc.call("set_log_enabled", enabled=bool(enabled))

    async def clear(self) -> None:
        await self._rpc.call("clear")

    async def read_after(self, seq: int) -> list[MailboxItem]:
        """Return every buffered item with a sequence number above ``seq``."""
        items = await self._rpc.call("read_after", seq=int(seq))
        return decode_response("read_after", _mailbox_items, items)

    async def set_filters(self, filters: Sequence[Filter]) -> None:
        await self._rpc.call("set_filters", filters=[f.to_wire() for f in filters])

    async def send_raw(self, id: MessageId, data: bytes) -> None:
        """Transmit one frame onto the bus through the bridge."""
        if len(data) > CAN_CLASSIC_MAX_DLC:
            raise ValidationError(f"CAN frame data cannot exceed 8 bytes, got {len(data)}")
        LOGGER.debug("send_raw %r %s", id, bytes(data).hex())
        await self._rpc.call("send_raw", id=id.to_dict(), data=list(data))
