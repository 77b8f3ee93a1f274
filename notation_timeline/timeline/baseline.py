"""Baseline timeline - built from the notation structure alone.

No playback engine is involved: durations come straight from the parsed
tree as exact whole-note fractions, so this is the reference timeline that
engine-derived timelines are normalized against.
"""

import logging
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Dict, Iterable, List, Optional

from ..analysis.meter import MeterAnalyzer, MeterInfo
from ..core.constants import (
    BOUNDARY_EPSILON,
    DEFAULT_BEAT_LENGTH,
    DEFAULT_BPM,
    DEFAULT_VELOCITY,
)
from ..core.note import Note, NoteSource
from ..core.timeline import Timeline, empty_timeline
from ..input.abc_parser import (
    AbcElement,
    AbcParser,
    AbcPitch,
    AbcTune,
    BarElement,
    KeyChangeElement,
    NoteElement,
    RestElement,
)
from ..input.keys import AccidentalState, KeySignature
from .boundaries import MeasureBoundaryAccumulator

logger = logging.getLogger(__name__)


@dataclass
class BaselineResult:
    """Baseline build output."""

    timeline: Timeline
    seconds_per_beat: float
    char_map: Dict[int, float] = field(default_factory=dict)  # char -> seconds


class TieState:
    """Open ties of one voice, keyed by resolved pitch."""

    def __init__(self):
        self._open: Dict[float, Note] = {}

    def continuation(self, pitch: float) -> Optional[Note]:
        return self._open.get(pitch)

    def replace(self, opened: Dict[float, Note]) -> None:
        """Keep only the ties opened by the latest note element."""
        self._open = dict(opened)

    def clear(self) -> None:
        self._open.clear()

    def __len__(self) -> int:
        return len(self._open)


class _VoiceCursor:
    """Running position, accidentals and open ties of one voice."""

    def __init__(self, key: KeySignature):
        self.position = Fraction(0)  # whole notes
        self.accidentals = AccidentalState(key)
        self.ties = TieState()

    def resolve(self, pitch: AbcPitch) -> float:
        return self.accidentals.resolve(pitch.step, pitch.octave, pitch.accidental)


class BaselineTimelineBuilder:
    """Build the reference timeline from ABC text."""

    def __init__(
        self,
        meter_analyzer: Optional[MeterAnalyzer] = None,
        parser: Optional[AbcParser] = None,
    ):
        self.meter_analyzer = meter_analyzer or MeterAnalyzer()
        self.parser = parser or AbcParser()

    def build(self, text: str) -> BaselineResult:
        """
        Build the baseline timeline.

        Args:
            text: ABC notation

        Returns:
            BaselineResult. Malformed or empty notation yields an empty
            4/4 timeline and an empty char map; nothing is raised.
        """
        if not text or not text.strip():
            return self._empty()

        try:
            tune = self.parser.parse(text)
            return self._build_from_tune(tune)
        except Exception as e:
            logger.warning("Could not build baseline timeline: %s", e)
            return self._empty()

    def _empty(self) -> BaselineResult:
        timeline = empty_timeline()
        return BaselineResult(
            timeline=timeline,
            seconds_per_beat=60.0 / DEFAULT_BPM,
            char_map={},
        )

    def _build_from_tune(self, tune: AbcTune) -> BaselineResult:
        meter = self.meter_analyzer.analyze(tune.meter)

        if tune.tempo is not None and tune.tempo.bpm > 0 and tune.tempo.beat_length > 0:
            bpm = tune.tempo.bpm
            beat_length = tune.tempo.beat_length
        else:
            bpm = DEFAULT_BPM
            beat_length = Fraction(*DEFAULT_BEAT_LENGTH)

        seconds_per_beat = 60.0 / bpm
        seconds_per_whole_note = seconds_per_beat / float(beat_length)
        seconds_per_subdivision = seconds_per_whole_note / meter.subdivision_unit

        notes: List[Note] = []
        char_map: Dict[int, float] = {}
        boundaries = MeasureBoundaryAccumulator()

        streams = tune.voice_streams()
        for stream_index, ((staff_index, voice_index), elements) in enumerate(streams.items()):
            self._scan_voice(
                elements,
                tune.key,
                meter,
                staff_index,
                voice_index,
                seconds_per_whole_note,
                notes,
                char_map,
                boundaries if stream_index == 0 else None,
            )

        total = max((note.end_subdivision for note in notes), default=0.0)
        if len(boundaries) == 0:
            boundaries.add_periodic(meter.subdivisions_per_measure, total)

        timeline = Timeline(
            notes=notes,
            total_subdivisions=total,
            subdivisions_per_measure=meter.subdivisions_per_measure,
            subdivision_unit=meter.subdivision_unit,
            subdivisions_per_beat=meter.subdivisions_per_beat,
            measure_boundaries=boundaries.values,
            seconds_per_subdivision=seconds_per_subdivision,
        )
        logger.debug(
            "Baseline timeline: %d notes, %.4f subdivisions, %.4f s/subdivision, "
            "boundaries %s",
            len(notes),
            total,
            seconds_per_subdivision,
            timeline.measure_boundaries[:5],
        )
        return BaselineResult(
            timeline=timeline,
            seconds_per_beat=seconds_per_beat,
            char_map=char_map,
        )

    def _scan_voice(
        self,
        elements: Iterable[AbcElement],
        key: KeySignature,
        meter: MeterInfo,
        staff_index: int,
        voice_index: int,
        seconds_per_whole_note: float,
        notes: List[Note],
        char_map: Dict[int, float],
        boundaries: Optional[MeasureBoundaryAccumulator],
    ) -> None:
        cursor = _VoiceCursor(key)
        unit = meter.subdivision_unit
        after_bar = False

        for element in elements:
            if isinstance(element, KeyChangeElement):
                cursor.accidentals.set_key(element.key)
                continue

            if isinstance(element, BarElement):
                cursor.accidentals.bar()
                after_bar = True
                continue

            if not isinstance(element, (NoteElement, RestElement)):
                continue

            start = float(cursor.position * unit)
            if after_bar and boundaries is not None and start > BOUNDARY_EPSILON:
                boundaries.add(start)
            after_bar = False

            if isinstance(element, RestElement):
                cursor.ties.clear()
                cursor.position += element.duration
                continue

            duration = float(element.duration * unit)
            char_map.setdefault(
                element.start_char,
                float(cursor.position) * seconds_per_whole_note,
            )

            opened: Dict[float, Note] = {}
            for pitch in element.pitches:
                midi = cursor.resolve(pitch)
                note = cursor.ties.continuation(midi) if pitch.tie_end else None
                if note is not None:
                    note.duration_subdivisions += duration
                    note.source.end_char = element.end_char
                else:
                    note = Note(
                        pitch=midi,
                        start_subdivision=start,
                        duration_subdivisions=duration,
                        velocity=DEFAULT_VELOCITY,
                        source=NoteSource(
                            start_char=element.start_char,
                            end_char=element.end_char,
                            staff_index=staff_index,
                            voice_index=voice_index,
                        ),
                    )
                    notes.append(note)
                if pitch.tie_start:
                    opened[midi] = note
            cursor.ties.replace(opened)

            cursor.position += element.duration
