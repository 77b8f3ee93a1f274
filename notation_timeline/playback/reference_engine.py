"""Reference engine - a deterministic stand-in for a browser notation engine.

Renders ABC with the package's own parser and produces timing events in
the shape a browser engine reports them (camelCase dicts, milliseconds,
per-pitch whole-note positions). It has no audio device: time only moves
when ``ReferenceTimingCallbacks.advance_to`` is called, which makes
playback reproducible from the CLI and in tests.
"""

import logging
from fractions import Fraction
from typing import Any, Dict, List, Optional, Tuple

from ..core.constants import (
    DEFAULT_BEAT_LENGTH,
    DEFAULT_BPM,
    DEFAULT_METER,
    DEFAULT_VELOCITY,
    UNITY_WARP,
)
from ..input.abc_parser import (
    AbcParser,
    AbcTune,
    BarElement,
    KeyChangeElement,
    NoteElement,
    RestElement,
)
from ..input.keys import AccidentalState
from .engine import (
    EventCallback,
    RenderEngine,
    RenderedTune,
    SynthController,
    TimingCallbacks,
)

logger = logging.getLogger(__name__)


class ReferenceTune(RenderedTune):
    """A parsed tune with its notated tempo."""

    def __init__(self, tune: AbcTune):
        self.tune = tune
        self.audio_ready = False

    def get_meter_fraction(self) -> Optional[Tuple[int, int]]:
        return self.tune.meter

    @property
    def beat_length(self) -> Fraction:
        tempo = self.tune.tempo
        if tempo is not None and tempo.beat_length > 0:
            return tempo.beat_length
        return Fraction(*DEFAULT_BEAT_LENGTH)

    @property
    def bpm(self) -> float:
        tempo = self.tune.tempo
        if tempo is not None and tempo.bpm > 0:
            return tempo.bpm
        return DEFAULT_BPM

    @property
    def notated_qpm(self) -> float:
        """Quarter notes per minute at the notated tempo."""
        return self.bpm * float(self.beat_length) * 4

    @property
    def milliseconds_per_whole_note(self) -> float:
        return 60000.0 / self.bpm / float(self.beat_length)

    def milliseconds_per_measure(self) -> float:
        num, den = self.tune.meter or DEFAULT_METER
        return self.milliseconds_per_whole_note * num / den

    def set_up_audio(self) -> None:
        self.audio_ready = True

    def note_timings(self, warp: float = UNITY_WARP) -> List[Dict[str, Any]]:
        """
        Timing events for the whole tune at a playback warp.

        Simultaneous notes from different voices are merged into one event,
        and a final ``end`` event marks the end of the music.
        """
        scale = self.milliseconds_per_whole_note * UNITY_WARP / warp
        ms_per_measure = self.milliseconds_per_measure() * UNITY_WARP / warp

        merged: Dict[Fraction, Dict[str, Any]] = {}
        end_position = Fraction(0)

        for voice_number, elements in enumerate(self.tune.voice_streams().values()):
            accidentals = AccidentalState(self.tune.key)
            position = Fraction(0)
            measure = 0
            measure_start = True

            for element in elements:
                if isinstance(element, KeyChangeElement):
                    accidentals.set_key(element.key)
                elif isinstance(element, BarElement):
                    accidentals.bar()
                    if position > 0:
                        measure += 1
                        measure_start = True
                elif isinstance(element, RestElement):
                    position += element.duration
                    measure_start = False
                elif isinstance(element, NoteElement):
                    pitches = [
                        {
                            "pitch": accidentals.resolve(p.step, p.octave, p.accidental),
                            "volume": DEFAULT_VELOCITY,
                            "start": float(position),
                            "duration": float(element.duration),
                        }
                        for p in element.pitches
                    ]
                    count = len(pitches)
                    event = merged.get(position)
                    if event is None:
                        merged[position] = {
                            "type": "event",
                            "milliseconds": float(position) * scale,
                            "duration": float(element.duration) * scale,
                            "startChar": element.start_char,
                            "endChar": element.end_char,
                            "startCharArray": [element.start_char] * count,
                            "endCharArray": [element.end_char] * count,
                            "midiPitches": pitches,
                            "measureNumber": measure,
                            "measureStart": measure_start,
                            "millisecondsPerMeasure": ms_per_measure,
                        }
                    else:
                        event["startCharArray"].extend([element.start_char] * count)
                        event["endCharArray"].extend([element.end_char] * count)
                        event["midiPitches"].extend(pitches)
                        if voice_number == 0:
                            event["measureNumber"] = measure
                            event["measureStart"] = measure_start
                    position += element.duration
                    measure_start = False
            end_position = max(end_position, position)

        events = [merged[key] for key in sorted(merged)]
        events.append(
            {
                "type": "end",
                "milliseconds": float(end_position) * scale,
                "millisecondsPerMeasure": ms_per_measure,
            }
        )
        return events


class ReferenceTimingCallbacks(TimingCallbacks):
    """Timing clock driven explicitly with ``advance_to``."""

    def __init__(self, tune: ReferenceTune, event_callback: Optional[EventCallback] = None):
        self.tune = tune
        self.event_callback = event_callback
        self.warp = UNITY_WARP
        self.qpm = tune.notated_qpm
        self.running = False
        self.position_ms = 0.0
        self._next_index = 0
        self.note_timings = tune.note_timings()

    @property
    def total_ms(self) -> float:
        if not self.note_timings:
            return 0.0
        return self.note_timings[-1]["milliseconds"]

    def replace_target(self, tune: RenderedTune) -> None:
        if isinstance(tune, ReferenceTune):
            self.tune = tune
        self.note_timings = self.tune.note_timings(self.warp)
        self._seek_ms(self.position_ms)

    def set_warp(self, warp: float) -> None:
        """Rescale the clock. Keeps the musical position."""
        percent = self.position_ms / self.total_ms if self.total_ms > 0 else 0.0
        self.warp = warp
        self.qpm = self.tune.notated_qpm * warp / UNITY_WARP
        self.note_timings = self.tune.note_timings(warp)
        self._seek_ms(percent * self.total_ms)

    def start(self, offset_percent: Optional[float] = None) -> None:
        if offset_percent is not None:
            self.set_progress(offset_percent)
        self.running = True

    def stop(self) -> None:
        self.running = False

    def pause(self) -> None:
        self.running = False

    def set_progress(self, percent: float, units: Optional[str] = None) -> None:
        if units == "seconds":
            self._seek_ms(percent * 1000)
        else:
            self._seek_ms(min(max(percent, 0.0), 1.0) * self.total_ms)

    def advance_to(self, milliseconds: float) -> int:
        """
        Move the clock forward, firing every event passed on the way.

        Returns:
            Number of events fired
        """
        if not self.running:
            return 0
        fired = 0
        while self._next_index < len(self.note_timings):
            event = self.note_timings[self._next_index]
            if event["milliseconds"] > milliseconds:
                break
            self._next_index += 1
            if self.event_callback is not None and event["type"] == "event":
                self.event_callback(event)
            fired += 1
        self.position_ms = max(self.position_ms, milliseconds)
        return fired

    def _seek_ms(self, milliseconds: float) -> None:
        self.position_ms = milliseconds
        self._next_index = 0
        while (
            self._next_index < len(self.note_timings)
            and self.note_timings[self._next_index]["milliseconds"] < milliseconds
        ):
            self._next_index += 1


class ReferenceSynthController(SynthController):
    """Silent transport with warp control."""

    def __init__(self, loop: bool = False):
        self.loop = loop
        self.tune: Optional[ReferenceTune] = None
        self.timing_callbacks: Optional[ReferenceTimingCallbacks] = None
        self.warp = UNITY_WARP
        self.is_started = False
        self.destroyed = False
        self._percent = 0.0

    @property
    def percent(self) -> float:
        """Progress 0-1, read from the timing clock when attached."""
        timing = self.timing_callbacks
        if isinstance(timing, ReferenceTimingCallbacks) and timing.total_ms > 0:
            return min(timing.position_ms / timing.total_ms, 1.0)
        return self._percent

    @property
    def current_tempo(self) -> Optional[float]:
        """Displayed QPM, rounded to an integer the way engines show it."""
        if self.tune is None:
            return None
        return round(self.tune.notated_qpm * self.warp / UNITY_WARP)

    def set_tune(
        self, tune: RenderedTune, timing_callbacks: Optional[TimingCallbacks] = None
    ) -> None:
        self.tune = tune
        self.timing_callbacks = timing_callbacks

    def play(self) -> None:
        self.is_started = True

    def pause(self) -> None:
        self.is_started = False

    def seek(self, percent: float, units: Optional[str] = None) -> None:
        self._move(min(max(percent, 0.0), 1.0))

    def restart(self) -> None:
        self._move(0.0)

    def finished(self) -> Optional[str]:
        self._move(0.0)
        if self.loop:
            return "continue"
        self.is_started = False
        return None

    def set_warp(self, warp: float) -> None:
        if warp <= 0:
            raise ValueError(f"Warp must be positive, got {warp}")
        self.warp = warp
        if isinstance(self.timing_callbacks, ReferenceTimingCallbacks):
            self.timing_callbacks.set_warp(warp)

    def destroy(self) -> None:
        self.destroyed = True
        self.is_started = False

    def _move(self, percent: float) -> None:
        self._percent = percent
        if self.timing_callbacks is not None:
            self.timing_callbacks.set_progress(percent)


class ReferenceEngine(RenderEngine):
    """Engine backed by the ABC parser."""

    def __init__(self, loop: bool = False, parser: Optional[AbcParser] = None):
        self.loop = loop
        self.parser = parser or AbcParser()

    def render(self, text: str) -> Optional[ReferenceTune]:
        tune = self.parser.parse(text)
        if not tune.lines:
            return None
        logger.debug("Rendered tune '%s' with %d notes", tune.title, tune.note_count)
        return ReferenceTune(tune)

    def timing_callbacks(
        self, tune: RenderedTune, event_callback: Optional[EventCallback] = None
    ) -> Optional[ReferenceTimingCallbacks]:
        if not isinstance(tune, ReferenceTune):
            return None
        return ReferenceTimingCallbacks(tune, event_callback)

    def synth_controller(self) -> ReferenceSynthController:
        return ReferenceSynthController(loop=self.loop)
