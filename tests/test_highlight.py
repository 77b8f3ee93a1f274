"""Tests for mapping playback events to timeline notes."""

from notation_timeline.core import Note, NoteSource, Timeline
from notation_timeline.playback import NoteHighlighter
from notation_timeline.timeline import BaselineTimelineBuilder, NotePlaybackEvent

# Chord at char 20, D at 25
CHORD_THEN_NOTE = "X:1\nM:4/4\nL:1/4\nK:C\n[CEG]D|\n"


def event(sequence_id, pitches, time_seconds=0.0, start_char=None):
    return NotePlaybackEvent(
        sequence_id=sequence_id,
        time_seconds=time_seconds,
        midi_pitches=list(pitches),
        start_char=start_char,
    )


def highlighter(text=CHORD_THEN_NOTE):
    result = BaselineTimelineBuilder().build(text)
    return NoteHighlighter(result.timeline, result.char_map)


class TestFindNote:
    """Events resolve to note indices."""

    def test_single_pitch_by_char(self):
        assert highlighter().find_note_index(event(1, [62], 0.5, start_char=25)) == 3

    def test_chord_prefers_top_pitch(self):
        assert highlighter().find_note_index(event(1, [60, 64, 67], 0.0, start_char=20)) == 2

    def test_single_pitch_without_char_uses_timing(self):
        assert highlighter().find_note_index(event(1, [62], 0.5)) == 3

    def test_shared_char_prefers_highest_pitch(self):
        assert highlighter().find_note_index(event(1, [60], 0.0, start_char=20)) == 2

    def test_unknown_char_falls_back_to_pitch(self):
        assert highlighter().find_note_index(event(1, [64], 0.0, start_char=999)) == 1

    def test_nearest_start_wins(self):
        notes = [
            Note(pitch=60, start_subdivision=0, duration_subdivisions=1),
            Note(pitch=60, start_subdivision=4, duration_subdivisions=1),
        ]
        timeline = Timeline(notes=notes, total_subdivisions=5, seconds_per_subdivision=0.5)
        assert NoteHighlighter(timeline).find_note_index(event(1, [60], 1.9)) == 1

    def test_char_map_overrides_note_start(self):
        notes = [
            Note(pitch=60, start_subdivision=0, duration_subdivisions=1,
                 source=NoteSource(start_char=10)),
            Note(pitch=60, start_subdivision=4, duration_subdivisions=1,
                 source=NoteSource(start_char=12)),
        ]
        timeline = Timeline(notes=notes, total_subdivisions=5, seconds_per_subdivision=0.5)
        # Engine reports the first note much later than the notation says
        finder = NoteHighlighter(timeline, char_map={10: 3.0, 12: 0.0})
        assert finder.find_note_index(event(1, [60, 48], 3.0)) == 0

    def test_no_matching_pitch(self):
        assert highlighter().find_note_index(event(1, [90], 0.0)) is None

    def test_empty_event(self):
        assert highlighter().find_note_index(event(1, [], 0.0)) is None


class TestHighlight:
    """Active note tracking."""

    def test_stale_events_ignored(self):
        finder = highlighter()
        assert finder.highlight(event(2, [62], 0.5, start_char=25)) == 3
        assert finder.highlight(event(1, [60, 64, 67], 0.0, start_char=20)) == 3
        assert finder.active_index == 3

    def test_none_clears(self):
        finder = highlighter()
        finder.highlight(event(1, [62], 0.5, start_char=25))
        assert finder.highlight(None) is None
        assert finder.active_index is None

    def test_reset(self):
        finder = highlighter()
        finder.highlight(event(5, [62], 0.5, start_char=25))
        finder.reset()
        assert finder.highlight(event(1, [60, 64, 67], 0.0, start_char=20)) == 2
