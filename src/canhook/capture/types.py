"""Capture filters and mailbox items."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from canhook.core.frame import CANFrame, MessageId


@dataclass(frozen=True)
class DecodedOnly:
    """Accept only frames the source could decode."""

    def accept(self, frame: CANFrame, decoded: Optional[dict[str, Any]]) -> bool:
        return decoded is not None

    def to_wire(self) -> Any:
        return "DecodedOnly"


@dataclass(frozen=True)
class IdMask:
    """Accept frames whose identifier matches ``id`` on the bits set in ``mask``."""

    id: MessageId
    mask: MessageId

    def accept(self, frame: CANFrame, decoded: Optional[dict[str, Any]]) -> bool:
        mask = self.mask.to_raw()
        return (frame.id.to_raw() & mask) == (self.id.to_raw() & mask)

    def to_wire(self) -> Any:
        return {"IdMask": {"id": self.id.to_dict(), "mask": self.mask.to_dict()}}


@dataclass(frozen=True)
class IdMaskRaw:
    """Like IdMask, but ``id`` and ``mask`` are packed 29-bit identifiers."""

    id: int
    mask: int

    def accept(self, frame: CANFrame, decoded: Optional[dict[str, Any]]) -> bool:
        return (frame.id.to_raw() & self.mask) == (self.id & self.mask)

    def to_wire(self) -> Any:
        return {"IdMaskRaw": {"id": self.id, "mask": self.mask}}


@dataclass(frozen=True)
class BodySize:
    """Accept frames whose payload length lies in ``[min, max]``."""

    min: int
    max: int

    def __post_init__(self) -> None:
        if self.min > self.max:
            raise ValueError(f"BodySize min ({self.min}) exceeds max ({self.max})")

    def accept(self, frame: CANFrame, decoded: Optional[dict[str, Any]]) -> bool:
        return self.min <= len(frame.data) <= self.max

    def to_wire(self) -> Any:
        return {"BodySize": {"min": self.min, "max": self.max}}


Filter = Union[DecodedOnly, IdMask, IdMaskRaw, BodySize]


def filter_from_wire(value: Any) -> Filter:
    """Parse the externally tagged form produced by ``to_wire``."""
    if value == "DecodedOnly":
        return DecodedOnly()
    if isinstance(value, dict) and len(value) == 1:
        ((tag, body),) = value.items()
        if tag == "IdMask":
            return IdMask(MessageId.from_dict(body["id"]), MessageId.from_dict(body["mask"]))
        if tag == "IdMaskRaw":
            return IdMaskRaw(int(body["id"]), int(body["mask"]))
        if tag == "BodySize":
            return BodySize(int(body["min"]), int(body["max"]))
    raise ValueError(f"Unknown filter: {value!r}")


def parse_filter(text: str) -> Filter:
    """Parse a command-line filter expression.

    Accepted forms: ``decoded``, ``mask:ID/MASK`` (raw 29-bit, hex allowed) and
    ``size:MIN-MAX``.
    """
    text = text.strip()
    if text == "decoded":
        return DecodedOnly()
    kind, _, rest = text.partition(":")
    if kind == "mask" and "/" in rest:
        id_text, mask_text = rest.split("/", 1)
        return IdMaskRaw(int(id_text, 0), int(mask_text, 0))
    if kind == "size" and "-" in rest:
        lo, hi = rest.split("-", 1)
        return BodySize(int(lo), int(hi))
    raise ValueError(f"Unrecognised filter expression: {text!r}")


@dataclass(frozen=True)
class MailboxItem:
    """A captured frame tagged with its per-source sequence number."""

    seq: int
    raw: CANFrame
    decoded: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return {"seq": self.seq, "raw": self.raw.to_dict(), "decoded": self.decoded}

    @staticmethod
    def from_dict(d: dict[str, Any]) -> MailboxItem:
        return MailboxItem(
            seq=int(d["seq"]),
            raw=CANFrame.from_dict(d["raw"]),
            decoded=d.get("decoded"),
        )
