"""Tests for the playback controller and the reference engine."""

import pytest

from notation_timeline.core import EngineUnavailableError
from notation_timeline.playback import (
    PlaybackCallbacks,
    PlaybackConfig,
    PlaybackController,
    ReferenceEngine,
    ReferenceTimingCallbacks,
    ReferenceTune,
    RenderEngine,
    TempoCell,
)
from notation_timeline.playback.reference_engine import ReferenceSynthController
from notation_timeline.input import AbcParser
from notation_timeline.timeline import NotePlaybackEvent

# Quarter = 0.5 s; body offsets start at 30
TUNE = "X:1\nM:4/4\nL:1/4\nQ:1/4=120\nK:C\nCDEF|\n"


class Recorder:
    """Collects every controller callback."""

    def __init__(self):
        self.times = []
        self.playing = []
        self.notes = []
        self.char_maps = []
        self.timelines = []
        self.tempos = []

    def callbacks(self):
        return PlaybackCallbacks(
            on_current_time_change=self.times.append,
            on_playing_change=self.playing.append,
            on_note_event=self.notes.append,
            on_char_time_map_change=self.char_maps.append,
            on_timeline_change=self.timelines.append,
            on_seconds_per_subdivision_change=self.tempos.append,
        )


def make_controller(text=TUNE, **kwargs):
    recorder = Recorder()
    controller = PlaybackController(
        ReferenceEngine(), text, callbacks=recorder.callbacks(), **kwargs
    )
    return controller, recorder


class TestInitialization:
    """Rendering builds the event-stream timeline once."""

    def test_timeline_from_engine(self):
        controller, recorder = make_controller()
        timeline = controller.timeline
        assert [n.pitch for n in timeline.notes] == [60, 62, 64, 65]
        assert [n.start_subdivision for n in timeline.notes] == [0, 1, 2, 3]
        assert timeline.total_subdivisions == pytest.approx(4)
        assert timeline.measure_boundaries == [4]
        assert controller.seconds_per_subdivision == pytest.approx(0.5)

    def test_initial_emissions(self):
        controller, recorder = make_controller()
        assert recorder.tempos == [pytest.approx(0.5)]
        assert recorder.char_maps[-1] == {30: 0.0, 31: 0.5, 32: 1.0, 33: 1.5}
        assert recorder.timelines[-1] is controller.timeline

    def test_empty_notation(self):
        controller, recorder = make_controller("")
        assert controller.timeline is None
        assert controller.char_map == {}
        assert recorder.timelines == [None]

    def test_header_only_notation(self):
        controller, recorder = make_controller("X:1\nK:C\n")
        assert controller.timeline is None

    def test_render_error_resets(self, caplog):
        controller, recorder = make_controller("X:1\nK:C\nC#D\n")
        assert controller.timeline is None
        assert recorder.char_maps == [{}]
        assert "Error rendering notation" in caplog.text

    def test_default_warp_from_config(self):
        controller, recorder = make_controller(config=PlaybackConfig(default_warp=200))
        assert controller.seconds_per_subdivision == pytest.approx(0.25)
        assert controller.synth.current_tempo == 240

    def test_shared_tempo_cell(self):
        cell = TempoCell()
        controller, _ = make_controller(tempo_cell=cell)
        controller.set_warp(50)
        assert cell.seconds_per_subdivision == pytest.approx(1.0)


class TestWarp:
    """Warp changes touch only the tempo factor."""

    def test_half_speed(self):
        controller, recorder = make_controller()
        notes = controller.timeline.notes
        snapshot = [(n.pitch, n.start_subdivision, n.duration_subdivisions) for n in notes]
        boundaries = list(controller.timeline.measure_boundaries)

        assert controller.set_warp(50) == pytest.approx(1.0)

        timeline = controller.timeline
        assert timeline.notes is notes
        assert [(n.pitch, n.start_subdivision, n.duration_subdivisions) for n in notes] == snapshot
        assert timeline.measure_boundaries == boundaries
        assert timeline.total_subdivisions == pytest.approx(4)
        assert timeline.seconds_per_subdivision == pytest.approx(1.0)
        assert recorder.tempos[-1] == pytest.approx(1.0)

    def test_uses_precise_tempo_not_displayed(self):
        controller, _ = make_controller()
        controller.set_warp(33)
        assert controller.synth.current_tempo == 40
        assert controller.seconds_per_subdivision == pytest.approx(2000 * 100 / 33 / 1000 / 4)
        assert controller.resynchronizer.precise_qpm() == pytest.approx(39.6)

    def test_no_drift_after_many_changes(self):
        controller, _ = make_controller()
        for warp in (37, 113, 71, 149, 100):
            controller.set_warp(warp)
        assert controller.seconds_per_subdivision == pytest.approx(0.5, abs=1e-12)

    def test_highlighter_after_warp_uses_build_tempo(self):
        controller, _ = make_controller("X:1\nM:4/4\nL:1/4\nQ:1/4=120\nK:C\nCCCC|\n")
        controller.set_warp(50)
        finder = controller.note_highlighter()
        # Third note starts 2 s in at half speed
        event = NotePlaybackEvent(sequence_id=1, time_seconds=2.0, midi_pitches=[60])
        assert finder.find_note_index(event) == 2
        assert finder.char_map_seconds_per_subdivision == pytest.approx(0.5)

    def test_highlighter_without_timeline(self):
        controller, _ = make_controller("")
        assert controller.note_highlighter() is None

    def test_shared_cell_seeded_at_build_tempo(self):
        cell = TempoCell(seconds_per_subdivision=9.0, warp=50.0)
        controller, _ = make_controller(tempo_cell=cell)
        assert controller.tempo_cell is cell
        assert cell.seconds_per_subdivision == pytest.approx(0.5)
        assert cell.warp == 100

    def test_invalid_warp_raises(self):
        controller, _ = make_controller()
        with pytest.raises(ValueError):
            controller.set_warp(0)
        assert controller.seconds_per_subdivision == pytest.approx(0.5)

    def test_warp_keeps_position(self):
        controller, _ = make_controller()
        controller.play()
        controller.timing_callbacks.advance_to(750)
        controller.set_warp(50)
        clock = controller.timing_callbacks
        assert clock.running
        assert clock.position_ms == pytest.approx(1500)


class TestPlaybackEvents:
    """Timing events drive position and note events."""

    def test_note_events(self):
        controller, recorder = make_controller()
        controller.play()
        assert recorder.playing == [True]
        controller.timing_callbacks.advance_to(1000)

        assert [e.sequence_id for e in recorder.notes] == [1, 2, 3]
        assert [e.midi_pitches for e in recorder.notes] == [[60], [62], [64]]
        assert [e.time_seconds for e in recorder.notes] == [0.0, 0.5, 1.0]
        assert recorder.notes[1].start_char == 31
        assert recorder.notes[1].duration_seconds == pytest.approx(0.5)
        assert controller.current_subdivision == pytest.approx(2.0)

    def test_position_after_warp(self):
        controller, recorder = make_controller()
        controller.play()
        controller.timing_callbacks.advance_to(750)
        controller.set_warp(50)
        controller.timing_callbacks.advance_to(3000)

        assert [e.midi_pitches for e in recorder.notes] == [[60], [62], [64], [65]]
        assert recorder.notes[-1].time_seconds == pytest.approx(3.0)
        assert controller.current_subdivision == pytest.approx(3.0)

    def test_pause_stops_events(self):
        controller, recorder = make_controller()
        controller.play()
        controller.pause()
        assert controller.timing_callbacks.advance_to(2000) == 0
        assert recorder.playing == [True, False]
        assert not controller.is_playing

    def test_finished_stops_and_rewinds(self):
        controller, recorder = make_controller()
        controller.play()
        controller.timing_callbacks.advance_to(2000)
        assert controller.finished() is None
        assert recorder.playing[-1] is False
        assert recorder.times[-1] == 0.0
        assert controller.current_subdivision == 0.0
        assert not controller.is_playing

    def test_finished_continues_when_looping(self):
        recorder = Recorder()
        controller = PlaybackController(
            ReferenceEngine(loop=True), TUNE, callbacks=recorder.callbacks()
        )
        controller.play()
        controller.timing_callbacks.advance_to(2000)
        assert controller.finished() == "continue"
        assert recorder.playing[-1] is True
        assert controller.timing_callbacks.running
        assert controller.timing_callbacks.advance_to(0) == 1

    def test_seek_sets_position(self):
        controller, _ = make_controller()
        controller.seek(0.5)
        assert controller.current_subdivision == pytest.approx(2.0)
        assert controller.timing_callbacks.position_ms == pytest.approx(1000)

    def test_restart_and_reset(self):
        controller, recorder = make_controller()
        controller.seek(0.75)
        controller.restart()
        assert controller.current_subdivision == 0.0
        controller.reset()
        assert recorder.playing[-1] is False
        assert recorder.times[-1] == 0.0

    def test_dispose(self):
        controller, _ = make_controller()
        synth = controller.synth
        controller.dispose()
        assert synth.destroyed
        assert controller.timing_callbacks is None
        assert controller.frame_loop.cancelled
        controller.dispose()


class ReplayTune(ReferenceTune):
    """Reference tune with scripted timing events."""

    def __init__(self, events):
        super().__init__(AbcParser().parse(TUNE))
        self.events = events

    def note_timings(self, warp=100):
        return [dict(event) for event in self.events]


class ScriptedEngine(RenderEngine):
    def __init__(self, tune, with_timing=True, with_synth=True):
        self.tune = tune
        self.with_timing = with_timing
        self.with_synth = with_synth

    def render(self, text):
        return self.tune

    def timing_callbacks(self, tune, event_callback=None):
        if not self.with_timing:
            return None
        return ReferenceTimingCallbacks(tune, event_callback)

    def synth_controller(self):
        return ReferenceSynthController() if self.with_synth else None


class TestEngineFailures:
    """Engine problems reset derived data instead of raising."""

    def test_out_of_order_events(self, caplog):
        tune = ReplayTune(
            [
                {"type": "event", "milliseconds": 500, "duration": 500, "midiPitches": [{"pitch": 60}]},
                {"type": "event", "milliseconds": 0, "duration": 500, "midiPitches": [{"pitch": 62}]},
            ]
        )
        recorder = Recorder()
        controller = PlaybackController(ScriptedEngine(tune), TUNE, callbacks=recorder.callbacks())
        assert controller.timeline is None
        assert recorder.timelines == [None]
        assert "Discarding timing data" in caplog.text

    def test_missing_timing_callbacks(self, caplog):
        tune = ReplayTune([])
        controller = PlaybackController(ScriptedEngine(tune, with_timing=False), TUNE)
        assert controller.timeline is None
        assert "no timing callbacks" in caplog.text

    def test_empty_timing_data(self, caplog):
        controller = PlaybackController(ScriptedEngine(ReplayTune([])), TUNE)
        assert controller.timeline is None
        assert "Timing data empty" in caplog.text

    def test_warp_without_synth(self):
        tune = ReplayTune(
            [{"type": "event", "milliseconds": 0, "duration": 500, "midiPitches": [{"pitch": 60}]}]
        )
        controller = PlaybackController(ScriptedEngine(tune, with_synth=False), TUNE)
        assert controller.timeline is not None
        with pytest.raises(EngineUnavailableError):
            controller.set_warp(50)
        controller.play()
        assert not controller.is_playing


class TestReferenceEngine:
    """The deterministic engine's timing events."""

    def test_note_timings_shape(self):
        tune = ReferenceEngine().render(TUNE)
        events = tune.note_timings()
        assert [e["type"] for e in events] == ["event"] * 4 + ["end"]
        first = events[0]
        assert first["milliseconds"] == 0
        assert first["duration"] == 500
        assert first["startCharArray"] == [30]
        assert first["endCharArray"] == [31]
        assert first["midiPitches"][0]["pitch"] == 60
        assert first["midiPitches"][0]["start"] == 0
        assert first["midiPitches"][0]["duration"] == 0.25
        assert first["millisecondsPerMeasure"] == 2000
        assert events[-1]["milliseconds"] == 2000

    def test_warp_scales_milliseconds(self):
        tune = ReferenceEngine().render(TUNE)
        events = tune.note_timings(warp=50)
        assert [e["milliseconds"] for e in events] == [0, 1000, 2000, 3000, 4000]
        assert tune.milliseconds_per_measure() == 2000

    def test_measure_numbers(self):
        tune = ReferenceEngine().render("X:1\nM:2/4\nL:1/4\nK:C\nC|DE|FG|\n")
        events = [e for e in tune.note_timings() if e["type"] == "event"]
        assert [e["measureNumber"] for e in events] == [0, 1, 1, 2, 2]
        assert [e["measureStart"] for e in events] == [True, True, False, True, False]

    def test_voices_merge_by_position(self):
        tune = ReferenceEngine().render("X:1\nM:4/4\nL:1/4\nK:C\nV:1\nCD|\nV:2\nE,F,|\n")
        events = [e for e in tune.note_timings() if e["type"] == "event"]
        assert len(events) == 2
        assert [p["pitch"] for p in events[0]["midiPitches"]] == [60, 52]

    def test_notated_tempo(self):
        tune = ReferenceEngine().render("X:1\nM:6/8\nL:1/8\nQ:3/8=100\nK:C\nC\n")
        assert tune.notated_qpm == pytest.approx(150)
        assert tune.milliseconds_per_measure() == pytest.approx(1200)

    def test_render_empty(self):
        assert ReferenceEngine().render("X:1\nK:C\n") is None

    def test_synth_rejects_non_positive_warp(self):
        synth = ReferenceSynthController()
        with pytest.raises(ValueError):
            synth.set_warp(-1)
