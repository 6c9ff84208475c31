"""Tests for the command-line interface against the simulated fleet."""

import csv
from pathlib import Path

import pytest
from click.testing import CliRunner

from canhook.capture import CSV_COLUMNS
from canhook.cli import main


REPLAY = (
    "time_raw,id_type_hex,id_manufacturer_hex,id_api_class_hex,id_api_index_hex,id_device_id,data_hex\n"
    "100,02,05,01,03,7,01 02\n"
    "110,02,05,01,03,7,03\n"
    "120,02,05,01,03,8,\n"
)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def replay_file(tmp_path: Path) -> Path:
    path = tmp_path / "trace.csv"
    path.write_text(REPLAY)
    return path


class TestCli:
    """Tests for the click commands."""

    def test_providers(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["providers"])

        assert result.exit_code == 0, result.output
        assert "Providers" in result.output
        assert "Devices" in result.output

    def test_capture_to_csv(self, runner: CliRunner, tmp_path: Path) -> None:
        """Test a short capture is written with the export columns."""
        path = tmp_path / "capture.csv"

        result = runner.invoke(main, ["capture", "--duration", "0.3", "--csv", str(path)])

        assert result.exit_code == 0, result.output
        with path.open(newline="") as f:
            rows = list(csv.reader(f))
        assert tuple(rows[0]) == CSV_COLUMNS
        assert len(rows) > 1

    def test_capture_bad_filter(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["capture", "--filter", "everything"])

        assert result.exit_code == 2

    def test_replay(self, runner: CliRunner, replay_file: Path) -> None:
        result = runner.invoke(main, ["replay", str(replay_file), "--speed", "4"])

        assert result.exit_code == 0, result.output
        assert "Replay Complete" in result.output

    def test_replay_bad_file(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "bad.csv"
        path.write_text(REPLAY.replace("100,02", "soon,02"))

        result = runner.invoke(main, ["replay", str(path)])

        assert result.exit_code == 1
        assert "time is invalid" in result.output

    def test_replay_bad_speed(self, runner: CliRunner, replay_file: Path) -> None:
        result = runner.invoke(main, ["replay", str(replay_file), "--speed", "0"])

        assert result.exit_code == 1
        assert "Speed factor must be positive" in result.output

    def test_demo(self, runner: CliRunner) -> None:
        """Test the walkthrough polls status and upgrades the out-of-date device."""
        result = runner.invoke(main, ["demo"])

        assert result.exit_code == 0, result.output
        assert "now runs 2024.2.1" in result.output
        assert "Demo complete!" in result.output
