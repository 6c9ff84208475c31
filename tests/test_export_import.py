"""Tests for capture export and replay import."""

import csv
import io
import json

import pytest

from canhook.capture import CSV_COLUMNS, BodySize, DecodedOnly, export_csv, export_json, write_csv
from canhook.capture.types import MailboxItem
from canhook.core.frame import MessageId
from canhook.errors import ReplayDecodeError
from canhook.replay import decode_replay, decode_row, read_replay_csv


HEADER = "time_raw,id_type_hex,id_manufacturer_hex,id_api_class_hex,id_api_index_hex,id_device_id,data_hex\n"


def row(**overrides) -> dict:
    base = {
        "time_raw": "0",
        "id_type_hex": "02",
        "id_manufacturer_hex": "05",
        "id_api_class_hex": "01",
        "id_api_index_hex": "03",
        "id_device_id": "7",
        "data_hex": "01 02",
    }
    base.update(overrides)
    return base


class TestExport:
    """Tests for CSV and JSON export."""

    def test_header_and_rows(self, item_factory) -> None:
        """Test columns, hex id fields and decoded JSON."""
        decoded = MailboxItem(
            seq=2,
            raw=item_factory(2).raw,
            decoded={"name": "Blink", "device_id": 2, "signals": {"serial": 1}},
        )
        stream = io.StringIO()

        count = write_csv([decoded, item_factory(1)], stream)

        rows = list(csv.reader(io.StringIO(stream.getvalue())))
        assert count == 2
        assert tuple(rows[0]) == CSV_COLUMNS
        assert rows[1][:7] == ["20", "02", "05", "01", "03", "2", "01 02"]
        assert json.loads(rows[1][7])["name"] == "Blink"
        assert rows[2][7] == ""

    def test_export_order_is_given_order(self, item_factory, tmp_path) -> None:
        path = tmp_path / "capture.csv"

        export_csv([item_factory(3), item_factory(2), item_factory(1)], path)

        with path.open(newline="") as f:
            times = [r["time_raw"] for r in csv.DictReader(f)]
        assert times == ["30", "20", "10"]

    def test_export_then_import(self, item_factory) -> None:
        """Test an exported capture imports back with the same ids and payloads."""
        items = [item_factory(3, data=b""), item_factory(2, data=b"\xde\xad"), item_factory(1)]
        stream = io.StringIO()
        write_csv(items, stream)
        stream.seek(0)

        frames = read_replay_csv(stream)

        assert [f.time_ms for f in frames] == [0, 10, 20]
        assert [f.id for f in frames] == [items[2].raw.id, items[1].raw.id, items[0].raw.id]
        assert [f.data for f in frames] == [b"\x01\x02", b"\xde\xad", b""]

    def test_json_structure(self, item_factory, tmp_path) -> None:
        path = tmp_path / "capture.json"

        export_json([item_factory(1)], [DecodedOnly(), BodySize(1, 8)], path)

        data = json.loads(path.read_text())
        assert data["filters"] == ["DecodedOnly", {"BodySize": {"min": 1, "max": 8}}]
        assert data["packets"][0]["seq"] == 1
        assert data["packets"][0]["raw"]["data"] == [1, 2]


class TestImport:
    """Tests for decoding replay rows."""

    def test_rebased_and_sorted(self) -> None:
        frames = decode_replay([row(time_raw="100"), row(time_raw="50"), row(time_raw="150")])

        assert [f.time_ms for f in frames] == [50 - 50, 100 - 50, 150 - 50]

    def test_sort_is_stable(self) -> None:
        frames = decode_replay([row(time_raw="5", id_device_id="1"), row(time_raw="5", id_device_id="2")])

        assert [f.id.device_id for f in frames] == [1, 2]

    def test_hex_wins_over_decimal(self) -> None:
        """Test a hex column takes precedence over its decimal twin."""
        frame = decode_row(row(id_type_hex="10", id_type="3"))

        assert frame.id.device_type == 0x10

    def test_decimal_fallback(self) -> None:
        r = row(id_type="12", time="40", data="0a0b")
        del r["id_type_hex"], r["time_raw"], r["data_hex"]

        frame = decode_row(r)

        assert frame.id.device_type == 12
        assert frame.time_ms == 40
        assert frame.data == b"\x0a\x0b"

    def test_time_raw_wins_over_time(self) -> None:
        assert decode_row(row(time_raw="7", time="9")).time_ms == 7

    def test_empty_data_is_zero_bytes(self) -> None:
        assert decode_row(row(data_hex="")).data == b""

    def test_non_numeric_device_id(self) -> None:
        """Test a bad cell aborts with the offending field named."""
        with pytest.raises(ReplayDecodeError) as exc_info:
            decode_replay([row(), row(id_device_id="seven")])

        assert exc_info.value.field == "id_device_id"
        assert exc_info.value.value == "seven"

    def test_bad_time(self) -> None:
        with pytest.raises(ReplayDecodeError) as exc_info:
            decode_row(row(time_raw="soon"))

        assert exc_info.value.field == "time"

    def test_id_field_out_of_range(self) -> None:
        with pytest.raises(ReplayDecodeError) as exc_info:
            decode_row(row(id_type_hex="20"))

        assert exc_info.value.field == "id"

    @pytest.mark.parametrize("data", ["zz", "00 11 22 33 44 55 66 77 88", "123"])
    def test_bad_data(self, data: str) -> None:
        with pytest.raises(ReplayDecodeError, match="data") as exc_info:
            decode_row(row(data_hex=data))

        assert exc_info.value.field == "data"

    def test_header_only_file_rejected(self) -> None:
        with pytest.raises(ReplayDecodeError, match="no frames"):
            read_replay_csv(io.StringIO(HEADER))

    def test_read_from_path(self, tmp_path) -> None:
        path = tmp_path / "replay.csv"
        path.write_text(HEADER + "10,02,05,01,03,7,0102\n12.5,02,05,01,03,8,\n")

        frames = read_replay_csv(path)

        assert [f.time_ms for f in frames] == [0, 2.5]
        assert frames[0].id == MessageId(2, 5, 1, 3, 7)
        assert frames[1].data == b""
