"""Live capture mirror, filters and export."""

from canhook.capture.buffer import CaptureBuffer, CaptureSource, CaptureState
from canhook.capture.export import CSV_COLUMNS, export_csv, export_json, write_csv
from canhook.capture.types import (
    BodySize,
    DecodedOnly,
    Filter,
    IdMask,
    IdMaskRaw,
    MailboxItem,
    filter_from_wire,
    parse_filter,
)

__all__ = [
    "CaptureBuffer",
    "CaptureSource",
    "CaptureState",
    "CSV_COLUMNS",
    "export_csv",
    "export_json",
    "write_csv",
    "BodySize",
    "DecodedOnly",
    "Filter",
    "IdMask",
    "IdMaskRaw",
    "MailboxItem",
    "filter_from_wire",
    "parse_filter",
]
