"""Decoding of replay files into timed frames."""

from __future__ import annotations

import csv
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional, TextIO, Union

from canhook.core.frame import CAN_CLASSIC_MAX_DLC, MessageId
from canhook.errors import ReplayDecodeError


LOGGER = logging.getLogger(__name__)

Row = Mapping[str, Optional[str]]

# field name -> (hex column, decimal column)
_ID_COLUMNS = (
    ("id_type", "id_type_hex", "id_type"),
    ("id_manufacturer", "id_manufacturer_hex", "id_manufacturer"),
    ("id_api_class", "id_api_class_hex", "id_api_class"),
    ("id_api_index", "id_api_index_hex", "id_api_index"),
)


@dataclass(frozen=True)
class ReplayFrame:
    """A frame to replay, ``time_ms`` after the first frame of the file."""

    time_ms: float
    id: MessageId
    data: bytes


def _cell(row: Row, column: str) -> Optional[str]:
    value = row.get(column)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _parse_time(row: Row) -> float:
    text = _cell(row, "time_raw") or _cell(row, "time")
    try:
        value = float(text) if text is not None else math.nan
    except ValueError:
        value = math.nan
    if not math.isfinite(value):
        raise ReplayDecodeError("time", text, row)
    return value


def _parse_int(row: Row, field: str, hex_column: Optional[str], dec_column: str) -> int:
    hex_text = _cell(row, hex_column) if hex_column else None
    text, base = (hex_text, 16) if hex_text is not None else (_cell(row, dec_column), 10)
    if text is None:
        raise ReplayDecodeError(field, None, row)
    try:
        return int(text, base)
    except ValueError:
        raise ReplayDecodeError(field, text, row) from None


def _parse_data(row: Row) -> bytes:
    text = _cell(row, "data_hex") or _cell(row, "data")
    if text is None:
        if "data_hex" in row or "data" in row:
            return b""
        raise ReplayDecodeError("data", None, row, f"Data could not be parsed (row: {dict(row)})")
    try:
        data = bytes.fromhex("".join(text.split()))
    except ValueError:
        raise ReplayDecodeError("data", text, row, f"Data could not be parsed (row: {dict(row)})") from None
    if len(data) > CAN_CLASSIC_MAX_DLC:
        raise ReplayDecodeError(
            "data", text, row, f"CAN frame data cannot exceed 8 bytes, got {len(data)} (row: {dict(row)})"
        )
    return data


def decode_row(row: Row) -> ReplayFrame:
    """Decode one CSV row. Hex-suffixed columns win over their decimal twins."""
    time_ms = _parse_time(row)
    fields = [_parse_int(row, field, hex_col, dec_col) for field, hex_col, dec_col in _ID_COLUMNS]
    device_id = _parse_int(row, "id_device_id", None, "id_device_id")
    data = _parse_data(row)

    try:
        msg_id = MessageId(*fields, device_id)
    except ValueError as exc:
        raise ReplayDecodeError("id", fields + [device_id], row, f"{exc} (row: {dict(row)})") from None

    return ReplayFrame(time_ms=time_ms, id=msg_id, data=data)


def decode_replay(rows: Iterable[Row]) -> list[ReplayFrame]:
    """Decode all rows, order them by time and rebase them to start at 0.

    Any bad row aborts the whole import; so does a file without rows.
    """
    frames = [decode_row(row) for row in rows]
    if not frames:
        raise ReplayDecodeError("rows", None, {}, "Replay file contains no frames")

    frames.sort(key=lambda f: f.time_ms)
    start = frames[0].time_ms
    return [ReplayFrame(f.time_ms - start, f.id, f.data) for f in frames]


def read_replay_csv(source: Union[Path, str, TextIO]) -> list[ReplayFrame]:
    """Decode a CSV replay file (or open text stream) with a header row."""
    if isinstance(source, (str, Path)):
        with Path(source).open("r", encoding="utf-8", newline="") as f:
            frames = decode_replay(csv.DictReader(f))
    else:
        frames = decode_replay(csv.DictReader(source))
    LOGGER.info("Decoded %d replay frames spanning %.1f ms", len(frames), frames[-1].time_ms)
    return frames
