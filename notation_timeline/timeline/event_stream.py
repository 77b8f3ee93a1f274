"""Event-stream timeline - built from a playback engine's timing events.

Engine events carry real elapsed milliseconds. Dividing by the tempo the
events were produced at (seconds per subdivision) recovers the musical
position, so the resulting notes are tempo-invariant. Ties are not merged
here: the engine reports every tied segment as its own note-on.
"""

import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from ..analysis.meter import MeterAnalyzer, MeterInfo
from ..core.constants import (
    DEFAULT_SECONDS_PER_SUBDIVISION,
    DEFAULT_VELOCITY,
    TIMING_ORDER_TOLERANCE_MS,
)
from ..core.errors import TimingOrderError
from ..core.note import Note, NoteSource
from ..core.timeline import Timeline
from .boundaries import MeasureBoundaryAccumulator
from .events import TimingDerivedData, TimingEvent

logger = logging.getLogger(__name__)


def _positive(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return float(value)


def _call(target: Any, name: str) -> Any:
    method = getattr(target, name, None)
    if not callable(method):
        return None
    return method()


class EventStreamTimelineBuilder:
    """Convert engine timing events into an invariant Timeline."""

    def __init__(self, meter_analyzer: Optional[MeterAnalyzer] = None):
        self.meter_analyzer = meter_analyzer or MeterAnalyzer()

    def meter_for(self, tune: Any) -> MeterInfo:
        """Meter of a rendered tune (4/4 when it reports none)."""
        return self.meter_analyzer.analyze(_call(tune, "get_meter_fraction"))

    def seconds_per_subdivision(
        self,
        tune: Any,
        events: List[TimingEvent],
        meter: Optional[MeterInfo] = None,
    ) -> float:
        """
        Tempo the events were produced at.

        Prefers the tune's milliseconds-per-measure, then the first event
        carrying one, then the 0.5 s default.
        """
        meter = meter or self.meter_for(tune)
        per_measure = meter.subdivisions_per_measure

        ms_per_measure = _positive(_call(tune, "milliseconds_per_measure"))
        if ms_per_measure is not None:
            return ms_per_measure / 1000 / per_measure

        for event in events:
            embedded = _positive(event.milliseconds_per_measure)
            if embedded is not None:
                return embedded / 1000 / per_measure

        logger.warning(
            "No tempo information in rendered tune; using %.3f s/subdivision",
            DEFAULT_SECONDS_PER_SUBDIVISION,
        )
        return DEFAULT_SECONDS_PER_SUBDIVISION

    def build(
        self,
        tune: Any,
        timings: Iterable[Any],
        seconds_per_subdivision: Optional[float] = None,
    ) -> TimingDerivedData:
        """
        Build the timeline from timing events.

        Args:
            tune: Rendered tune exposing ``get_meter_fraction()`` and
                ``milliseconds_per_measure()``
            timings: Raw engine events (dicts) or TimingEvent objects
            seconds_per_subdivision: Tempo override

        Returns:
            TimingDerivedData with char map (seconds), timeline and tempo

        Raises:
            TimingOrderError: If event timestamps decrease
        """
        events = [TimingEvent.from_raw(raw) for raw in timings if raw is not None]
        meter = self.meter_for(tune)
        sps = _positive(seconds_per_subdivision)
        if sps is None:
            sps = self.seconds_per_subdivision(tune, events, meter)

        unit = meter.subdivision_unit
        notes: List[Note] = []
        char_map: Dict[int, float] = {}
        boundaries = MeasureBoundaryAccumulator()
        max_end = 0.0
        last_measure_index: Optional[int] = None
        previous_ms: Optional[float] = None

        for event in events:
            ms = event.milliseconds
            if ms is not None:
                if previous_ms is not None and ms < previous_ms - TIMING_ORDER_TOLERANCE_MS:
                    raise TimingOrderError(previous_ms, ms)
                previous_ms = ms

            position = ms / 1000 / sps if ms is not None else None

            if ms is not None:
                for char in event.start_chars():
                    if char is not None and char not in char_map:
                        char_map[char] = ms / 1000

            if event.is_position_event and position is not None:
                boundaries.add(position)

            measure_index = event.measure_index
            if measure_index is not None:
                if last_measure_index is None or measure_index > last_measure_index:
                    starts_measure = event.measure_start is not False
                    if position is not None and position > 0 and starts_measure:
                        boundaries.add(position)
                    last_measure_index = measure_index

            if not event.is_note_event:
                continue

            for index, info in enumerate(event.midi_pitches):
                if info is None:
                    continue

                if position is not None:
                    start = position
                elif info.start is not None:
                    start = info.start * unit
                else:
                    start = 0.0

                if event.duration is not None:
                    duration = event.duration / 1000 / sps
                elif info.duration is not None:
                    duration = info.duration * unit
                else:
                    duration = 0.0

                max_end = max(max_end, start + duration, start)

                start_char, end_char = event.char_range_for(index)
                notes.append(
                    Note(
                        pitch=info.pitch,
                        start_subdivision=start,
                        duration_subdivisions=duration,
                        velocity=(
                            int(info.volume) if info.volume is not None else DEFAULT_VELOCITY
                        ),
                        source=NoteSource(start_char=start_char, end_char=end_char),
                    )
                )

        if len(boundaries) == 0 and meter.subdivisions_per_measure > 0:
            boundaries.add_periodic(meter.subdivisions_per_measure, max_end)

        timeline = Timeline(
            notes=notes,
            total_subdivisions=max_end,
            subdivisions_per_measure=meter.subdivisions_per_measure,
            subdivision_unit=unit,
            subdivisions_per_beat=meter.subdivisions_per_beat,
            measure_boundaries=boundaries.values,
            seconds_per_subdivision=sps,
        )
        logger.debug(
            "Event-stream timeline: %d notes, %.4f subdivisions, %.4f s/subdivision, "
            "%d measures, first boundaries %s",
            len(notes),
            max_end,
            sps,
            len(timeline.measure_boundaries),
            [round(value, 4) for value in timeline.measure_boundaries[:5]],
        )
        return TimingDerivedData(
            char_map=char_map,
            timeline=timeline,
            seconds_per_subdivision=sps,
        )
