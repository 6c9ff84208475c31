"""Export of captured frames to CSV and JSON."""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Iterable, Sequence, TextIO, Union

from canhook.capture.types import Filter, MailboxItem


CSV_COLUMNS = (
    "time_raw",
    "id_type_hex",
    "id_manufacturer_hex",
    "id_api_class_hex",
    "id_api_index_hex",
    "id_device_id",
    "data_hex",
    "decoded",
)


def csv_row(item: MailboxItem) -> list[Any]:
    frame = item.raw
    return [
        frame.timestamp,
        f"{frame.id.device_type:02x}",
        f"{frame.id.manufacturer:02x}",
        f"{frame.id.api_class:02x}",
        f"{frame.id.api_index:02x}",
        frame.id.device_id,
        frame.hex_data(" "),
        json.dumps(item.decoded) if item.decoded is not None else "",
    ]


def write_csv(items: Iterable[MailboxItem], stream: TextIO) -> int:
    """Write items, in the given order, as CSV. Returns the row count."""
    writer = csv.writer(stream)
    writer.writerow(CSV_COLUMNS)
    count = 0
    for item in items:
        writer.writerow(csv_row(item))
        count += 1
    return count


def export_csv(items: Iterable[MailboxItem], path: Union[Path, str]) -> int:
    with Path(path).open("w", encoding="utf-8", newline="") as f:
        return write_csv(items, f)


def export_json(
    items: Sequence[MailboxItem],
    filters: Sequence[Filter],
    path: Union[Path, str],
) -> None:
    """Write ``{"filters": [...], "packets": [...]}``."""
    data = {
        "filters": [f.to_wire() for f in filters],
        "packets": [item.to_dict() for item in items],
    }
    with Path(path).open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
