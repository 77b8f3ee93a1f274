"""Tests for the event-stream timeline builder and event normalization."""

import pytest

from notation_timeline.core import TimingOrderError
from notation_timeline.timeline import (
    EventStreamTimelineBuilder,
    MeasureBoundaryAccumulator,
    TimingEvent,
    normalize_midi_pitches,
)


class FakeTune:
    """Rendered tune exposing meter and measure duration."""

    def __init__(self, meter=(4, 4), ms_per_measure=2000.0):
        self.meter = meter
        self.ms_per_measure = ms_per_measure

    def get_meter_fraction(self):
        return self.meter

    def milliseconds_per_measure(self):
        return self.ms_per_measure


def note_event(ms, duration, pitches, start_char=None, end_char=None, **extra):
    event = {
        "type": "event",
        "milliseconds": ms,
        "duration": duration,
        "midiPitches": [{"pitch": p, "volume": 90} for p in pitches],
    }
    if start_char is not None:
        event["startChar"] = start_char
        event["endChar"] = end_char
    event.update(extra)
    return event


def quarters(count, ms_per_quarter=500.0):
    return [
        note_event(i * ms_per_quarter, ms_per_quarter, [60 + i], 20 + i, 21 + i)
        for i in range(count)
    ]


class TestEventConversion:
    """Milliseconds become subdivisions."""

    def test_four_quarters(self):
        data = EventStreamTimelineBuilder().build(FakeTune(), quarters(4))
        timeline = data.timeline
        assert data.seconds_per_subdivision == pytest.approx(0.5)
        assert [n.start_subdivision for n in timeline.notes] == [0, 1, 2, 3]
        assert all(n.duration_subdivisions == pytest.approx(1) for n in timeline.notes)
        assert timeline.total_subdivisions == pytest.approx(4)
        assert timeline.measure_boundaries == [4]

    def test_velocity_from_volume(self):
        data = EventStreamTimelineBuilder().build(FakeTune(), quarters(1))
        assert data.timeline.notes[0].velocity == 90

    def test_default_velocity(self):
        events = [{"type": "event", "milliseconds": 0, "duration": 500, "midiPitches": [{"pitch": 60}]}]
        data = EventStreamTimelineBuilder().build(FakeTune(), events)
        assert data.timeline.notes[0].velocity == 80

    def test_chord_shares_start(self):
        events = [
            note_event(
                0,
                1000,
                [60, 64, 67],
                startCharArray=[20, 21, 22],
                endCharArray=[21, 22, 23],
            )
        ]
        notes = EventStreamTimelineBuilder().build(FakeTune(), events).timeline.notes
        assert [n.pitch for n in notes] == [60, 64, 67]
        assert all(n.start_subdivision == 0 for n in notes)
        assert [n.source.start_char for n in notes] == [20, 21, 22]
        assert [n.source.end_char for n in notes] == [21, 22, 23]

    def test_scalar_char_range(self):
        notes = EventStreamTimelineBuilder().build(FakeTune(), quarters(2)).timeline.notes
        assert (notes[1].source.start_char, notes[1].source.end_char) == (21, 22)

    def test_whole_note_fallback(self):
        events = [
            {
                "type": "event",
                "midiPitches": [{"pitch": 62, "start": 0.25, "duration": 0.5}],
            }
        ]
        note = EventStreamTimelineBuilder().build(FakeTune(), events).timeline.notes[0]
        assert note.start_subdivision == pytest.approx(1.0)
        assert note.duration_subdivisions == pytest.approx(2.0)

    def test_compound_meter(self):
        tune = FakeTune(meter=(6, 8), ms_per_measure=1500.0)
        events = [note_event(i * 250.0, 250.0, [60]) for i in range(6)]
        timeline = EventStreamTimelineBuilder().build(tune, events).timeline
        assert timeline.subdivisions_per_beat == 3
        assert timeline.seconds_per_subdivision == pytest.approx(0.25)
        assert [n.start_subdivision for n in timeline.notes] == pytest.approx(
            [0, 1, 2, 3, 4, 5]
        )

    def test_non_note_events_add_no_notes(self):
        events = quarters(2) + [{"type": "end", "milliseconds": 1000}]
        timeline = EventStreamTimelineBuilder().build(FakeTune(), events).timeline
        assert len(timeline.notes) == 2

    def test_empty_events(self):
        data = EventStreamTimelineBuilder().build(FakeTune(), [])
        assert data.timeline.notes == []
        assert data.timeline.total_subdivisions == 0
        assert data.char_map == {}


class TestTempoSource:
    """Tempo is read from the tune, then events, then the default."""

    def test_override(self):
        data = EventStreamTimelineBuilder().build(
            FakeTune(), quarters(2, 1000.0), seconds_per_subdivision=1.0
        )
        assert [n.start_subdivision for n in data.timeline.notes] == [0, 1]

    def test_embedded_ms_per_measure(self):
        events = [note_event(0, 750, [60], millisecondsPerMeasure=3000.0)]
        data = EventStreamTimelineBuilder().build(object(), events)
        assert data.seconds_per_subdivision == pytest.approx(0.75)
        assert data.timeline.notes[0].duration_subdivisions == pytest.approx(1.0)

    def test_default_tempo(self, caplog):
        data = EventStreamTimelineBuilder().build(FakeTune(ms_per_measure=None), quarters(1))
        assert data.seconds_per_subdivision == 0.5
        assert "No tempo information" in caplog.text

    def test_invalid_tune_tempo_is_skipped(self):
        events = [note_event(0, 500, [60], millisecondsPerMeasure=4000.0)]
        data = EventStreamTimelineBuilder().build(FakeTune(ms_per_measure=float("nan")), events)
        assert data.seconds_per_subdivision == pytest.approx(1.0)

    def test_tempo_invariance(self):
        builder = EventStreamTimelineBuilder()
        normal = builder.build(FakeTune(), quarters(4, 500.0)).timeline
        # Same tune played at half speed: events twice as far apart
        slow = builder.build(FakeTune(), quarters(4, 1000.0), seconds_per_subdivision=1.0).timeline
        assert [n.start_subdivision for n in normal.notes] == [
            n.start_subdivision for n in slow.notes
        ]
        assert [n.duration_subdivisions for n in normal.notes] == [
            n.duration_subdivisions for n in slow.notes
        ]


class TestBoundaries:
    """Measure boundaries from position events and measure numbers."""

    def test_bar_events(self):
        events = quarters(4) + [{"type": "bar", "milliseconds": 2000}] + [
            note_event(2000, 500, [67])
        ]
        timeline = EventStreamTimelineBuilder().build(FakeTune(), events).timeline
        assert timeline.measure_boundaries == [4]

    def test_duplicate_bar_events_dedup(self):
        events = quarters(4) + [
            {"type": "bar", "milliseconds": 2000},
            {"type": "measure", "milliseconds": 2000.0001},
            note_event(2000.0001, 500, [67]),
        ]
        timeline = EventStreamTimelineBuilder().build(FakeTune(), events).timeline
        assert timeline.measure_boundaries == [4]

    def test_measure_numbers(self):
        events = []
        for i in range(6):
            measure = 0 if i < 2 else 1
            events.append(
                note_event(i * 500.0, 500.0, [60], measureNumber=measure, measureStart=i == 2)
            )
        timeline = EventStreamTimelineBuilder().build(FakeTune(), events).timeline
        # Pickup of two quarters
        assert timeline.measure_boundaries == [2]

    def test_bar_number_alias(self):
        events = [
            note_event(0, 500, [60], barNumber=0),
            note_event(500, 500, [62], barNumber=1),
        ]
        timeline = EventStreamTimelineBuilder().build(FakeTune(), events).timeline
        assert timeline.measure_boundaries == [1]

    def test_measure_start_false_is_skipped(self):
        events = [
            note_event(0, 500, [60], measureNumber=0),
            note_event(500, 500, [62], measureNumber=1, measureStart=False),
            note_event(1000, 3000, [64], measureNumber=1),
        ]
        timeline = EventStreamTimelineBuilder().build(FakeTune(), events).timeline
        # Falls back to periodic boundaries
        assert timeline.measure_boundaries == [4, 8]

    def test_periodic_fallback_inclusive(self):
        timeline = EventStreamTimelineBuilder().build(FakeTune(), quarters(8)).timeline
        assert timeline.measure_boundaries == [4, 8]


class TestCharMap:
    """Character offsets map to seconds."""

    def test_first_writer_wins(self):
        events = [
            note_event(0, 500, [60], 20, 21),
            note_event(500, 500, [62], 22, 23),
            note_event(1000, 500, [60], 20, 21),
        ]
        data = EventStreamTimelineBuilder().build(FakeTune(), events)
        assert data.char_map == {20: 0.0, 22: 0.5}

    def test_char_arrays_in_seconds(self):
        events = [note_event(1500, 500, [60, 64], startCharArray=[30, 31], endCharArray=[31, 32])]
        data = EventStreamTimelineBuilder().build(FakeTune(), events)
        assert data.char_map == {30: 1.5, 31: 1.5}


class TestTimingOrder:
    """Decreasing timestamps are rejected."""

    def test_decreasing_raises(self):
        events = [note_event(500, 500, [60]), note_event(0, 500, [62])]
        with pytest.raises(TimingOrderError) as exc_info:
            EventStreamTimelineBuilder().build(FakeTune(), events)
        assert exc_info.value.previous_ms == 500
        assert exc_info.value.current_ms == 0

    def test_equal_timestamps_allowed(self):
        events = [note_event(0, 500, [60]), note_event(0, 500, [64])]
        timeline = EventStreamTimelineBuilder().build(FakeTune(), events).timeline
        assert len(timeline.notes) == 2


class TestEventNormalization:
    """Raw engine events are normalized once."""

    def test_from_raw(self):
        event = TimingEvent.from_raw(
            {
                "type": "event",
                "milliseconds": 250,
                "duration": "x",
                "startChar": 4,
                "measureStart": "yes",
                "midiPitches": [{"pitch": 60}, {"volume": 3}, None],
            }
        )
        assert event.milliseconds == 250
        assert event.duration is None
        assert event.start_char == 4
        assert event.measure_start is None
        assert event.midi_pitches[0].pitch == 60
        assert event.midi_pitches[1] is None
        assert event.midi_pitches[2] is None
        assert event.is_note_event

    def test_from_object(self):
        class Raw:
            type = "bar"
            milliseconds = 100.0

        event = TimingEvent.from_raw(Raw())
        assert event.is_position_event
        assert not event.is_note_event

    def test_normalize_midi_pitches(self):
        assert normalize_midi_pitches([60, {"pitch": 64}, {"midi": 67}, "x", None]) == [60, 64, 67]
        assert normalize_midi_pitches(None) == []
        assert normalize_midi_pitches([float("nan"), 61.5]) == [61.5]


class TestMeasureBoundaryAccumulator:
    """Boundary deduplication and rounding."""

    def test_dedup_within_epsilon(self):
        acc = MeasureBoundaryAccumulator()
        assert acc.add(4.0)
        assert not acc.add(4.00005)
        assert acc.add(4.001)
        assert acc.values == [4.0, 4.001]

    def test_rejects_invalid(self):
        acc = MeasureBoundaryAccumulator()
        assert not acc.add(None)
        assert not acc.add(float("inf"))
        assert not acc.add(-1.0)
        assert len(acc) == 0

    def test_rounding(self):
        acc = MeasureBoundaryAccumulator()
        acc.add(1.23456789)
        assert acc.values == [1.234568]

    def test_periodic_slack(self):
        acc = MeasureBoundaryAccumulator()
        acc.add_periodic(4, 7.9999999)
        assert acc.values == [4, 8]
