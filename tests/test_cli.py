"""Tests for the command-line interface."""

import json

import numpy as np
import pytest
from typer.testing import CliRunner

from notation_timeline.cli import app

runner = CliRunner()

TUNE = "X:1\nM:4/4\nL:1/4\nQ:1/4=120\nK:C\nCDEF|GABc|\n"


@pytest.fixture
def tune_file(tmp_path):
    path = tmp_path / "scale.abc"
    path.write_text(TUNE, encoding="utf-8")
    return path


class TestTimelineCommand:
    """The timeline command."""

    def test_table(self, tune_file):
        result = runner.invoke(app, ["timeline", str(tune_file)])
        assert result.exit_code == 0
        assert "Notes: 8" in result.output
        assert "Meter: 4/4" in result.output

    def test_json(self, tune_file):
        result = runner.invoke(app, ["timeline", str(tune_file), "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert len(data["notes"]) == 8
        assert data["measure_boundaries"] == [4]
        assert data["char_map"]["30"] == 0.0

    def test_engine_source(self, tune_file):
        result = runner.invoke(app, ["timeline", str(tune_file), "-s", "engine"])
        assert result.exit_code == 0
        assert "Notes: 8" in result.output

    def test_unknown_source(self, tune_file):
        result = runner.invoke(app, ["timeline", str(tune_file), "-s", "audio"])
        assert result.exit_code == 1

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["timeline", str(tmp_path / "missing.abc")])
        assert result.exit_code == 1
        assert "File not found" in result.output

    def test_no_notes(self, tmp_path):
        path = tmp_path / "empty.abc"
        path.write_text("X:1\nK:C\n", encoding="utf-8")
        result = runner.invoke(app, ["timeline", str(path)])
        assert result.exit_code == 0
        assert "No notes found" in result.output


class TestMeterCommand:
    """The meter command."""

    def test_compound(self):
        result = runner.invoke(app, ["meter", "6/8"])
        assert result.exit_code == 0
        assert "Compound" in result.output
        assert "yes" in result.output


class TestSimulateCommand:
    """The simulate command."""

    def test_warp_changes(self, tune_file):
        result = runner.invoke(app, ["simulate", str(tune_file), "-w", "50", "-w", "150"])
        assert result.exit_code == 0
        assert "Warp Changes" in result.output
        assert "1.000000" in result.output
        assert "Played 8 note events" in result.output

    def test_non_positive_warp(self, tune_file):
        result = runner.invoke(app, ["simulate", str(tune_file), "-w", "50", "-w", "0"])
        assert result.exit_code == 1
        assert "Warp must be positive" in result.output
        assert result.exception is None or isinstance(result.exception, SystemExit)


class TestCompareCommand:
    """The compare command."""

    def test_match(self, tune_file):
        result = runner.invoke(app, ["compare", str(tune_file)])
        assert result.exit_code == 0
        assert "Timelines match" in result.output

    def test_ties_differ(self, tmp_path):
        path = tmp_path / "tied.abc"
        path.write_text("X:1\nM:4/4\nL:1/4\nK:C\nCDE-E|\n", encoding="utf-8")
        result = runner.invoke(app, ["compare", str(path)])
        assert result.exit_code == 1
        assert "Timelines differ" in result.output


class TestExportCommand:
    """The export command."""

    def test_midi(self, tune_file, tmp_path):
        output = tmp_path / "scale.mid"
        result = runner.invoke(app, ["export", str(tune_file), "-o", str(output), "-w", "50"])
        assert result.exit_code == 0
        assert output.exists()

    def test_preview(self, tune_file, tmp_path):
        output = tmp_path / "scale.npy"
        result = runner.invoke(
            app, ["export", str(tune_file), "-o", str(output), "--width", "100", "--height", "20"]
        )
        assert result.exit_code == 0
        assert np.load(output).shape == (20, 100, 3)

    def test_unsupported_format(self, tune_file, tmp_path):
        result = runner.invoke(app, ["export", str(tune_file), "-o", str(tmp_path / "x.wav")])
        assert result.exit_code == 1
        assert "Unsupported" in result.output

    def test_invalid_warp(self, tune_file, tmp_path):
        output = tmp_path / "scale.mid"
        result = runner.invoke(app, ["export", str(tune_file), "-o", str(output), "-w", "0"])
        assert result.exit_code == 1
        assert not output.exists()
