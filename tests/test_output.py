"""Tests for MIDI, MusicXML and preview output."""

import numpy as np
import pytest

from notation_timeline.core import Note, Timeline
from notation_timeline.output import (
    PreviewConfig,
    TimelineMIDIExporter,
    TimelineMusicXMLExporter,
    render_preview,
)
from notation_timeline.timeline import BaselineTimelineBuilder


def build(text="X:1\nM:4/4\nL:1/4\nK:C\nCDEF|[CEG]4|\n"):
    return BaselineTimelineBuilder().build(text).timeline


class TestMIDIExport:
    """MIDI rendering at a chosen tempo."""

    def test_note_times_at_timeline_tempo(self):
        midi = TimelineMIDIExporter().to_pretty_midi(build())
        notes = midi.instruments[0].notes
        assert len(notes) == 7
        assert [n.pitch for n in notes[:4]] == [60, 62, 64, 65]
        assert notes[1].start == pytest.approx(0.5)
        assert notes[4].end == pytest.approx(4.0)

    def test_custom_tempo(self):
        timeline = build()
        midi = TimelineMIDIExporter(seconds_per_subdivision=1.0).to_pretty_midi(timeline)
        assert midi.instruments[0].notes[1].start == pytest.approx(1.0)
        assert timeline.seconds_per_subdivision == pytest.approx(0.5)

    def test_qpm(self):
        timeline = build("X:1\nM:6/8\nL:1/8\nQ:3/8=100\nK:C\nCDE|\n")
        assert TimelineMIDIExporter().qpm(timeline) == pytest.approx(150)

    def test_time_signature(self):
        midi = TimelineMIDIExporter().to_pretty_midi(build("X:1\nM:3/4\nL:1/4\nK:C\nCDE|\n"))
        signature = midi.time_signature_changes[0]
        assert (signature.numerator, signature.denominator) == (3, 4)

    def test_skips_zero_length_and_rounds_pitch(self):
        timeline = Timeline(
            notes=[
                Note(pitch=60.5, start_subdivision=0, duration_subdivisions=1),
                Note(pitch=62, start_subdivision=1, duration_subdivisions=0),
            ],
            total_subdivisions=1,
        )
        notes = TimelineMIDIExporter().to_pretty_midi(timeline).instruments[0].notes
        assert len(notes) == 1
        assert notes[0].pitch in (60, 61)

    def test_export_writes_file(self, tmp_path):
        path = tmp_path / "out" / "tune.mid"
        TimelineMIDIExporter().export(build(), str(path))
        assert path.exists()
        assert path.stat().st_size > 0


class TestMusicXMLExport:
    """MusicXML via music21."""

    def test_score_contents(self):
        score = TimelineMusicXMLExporter(title="Scale").build_score(build())
        elements = list(score.recurse().notes)
        assert len(elements) == 5
        assert elements[0].duration.quarterLength == pytest.approx(1.0)
        assert elements[-1].isChord
        assert elements[-1].duration.quarterLength == pytest.approx(4.0)
        assert score.metadata.title == "Scale"

    def test_quarter_length(self):
        assert TimelineMusicXMLExporter.quarter_length(3, 8) == pytest.approx(1.5)
        assert TimelineMusicXMLExporter.quarter_length(1, 4) == pytest.approx(1.0)

    def test_gaps_become_rests(self):
        score = TimelineMusicXMLExporter().build_score(build("X:1\nL:1/4\nK:C\nCz2D\n"))
        rests = list(score.recurse().getElementsByClass("Rest"))
        assert len(rests) == 1
        assert rests[0].duration.quarterLength == pytest.approx(2.0)

    def test_export_writes_file(self, tmp_path):
        path = tmp_path / "tune.musicxml"
        TimelineMusicXMLExporter().export(build(), str(path))
        assert path.exists()


class TestPreview:
    """Preview image rendering."""

    def test_shape_and_type(self):
        image = render_preview(build())
        assert image.shape == (120, 960, 3)
        assert image.dtype == np.uint8

    def test_custom_size(self):
        image = render_preview(build(), width=200, height=50)
        assert image.shape == (50, 200, 3)

    def test_minimum_size(self):
        image = render_preview(build(), width=4, height=4)
        assert image.shape == (16, 32, 3)

    def test_config(self):
        config = PreviewConfig(width=100, height=40, min_frequency=100.0, max_frequency=1000.0)
        assert render_preview(build(), config=config).shape == (40, 100, 3)

    def test_notes_are_drawn(self):
        timeline = build()
        empty_background = render_preview(
            Timeline(
                notes=[Note(pitch=60, start_subdivision=0, duration_subdivisions=0.001)],
                total_subdivisions=timeline.total_subdivisions,
            )
        )
        image = render_preview(timeline)
        assert not np.array_equal(image, empty_background)

    def test_empty_timeline(self):
        assert render_preview(None) is None
        assert render_preview(Timeline()) is None
