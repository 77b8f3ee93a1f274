"""Timeline layer - invariant timelines from notation and from engine events.

- Baseline builder: static notation structure, ties merged per voice
- Event-stream builder: engine timing events converted to subdivisions
- Reconciliation: move either result onto the baseline tempo
"""

from .events import (
    MidiPitchInfo,
    TimingEvent,
    TimingDerivedData,
    NotePlaybackEvent,
    normalize_midi_pitches,
)
from .boundaries import MeasureBoundaryAccumulator
from .baseline import BaselineTimelineBuilder, BaselineResult, TieState
from .event_stream import EventStreamTimelineBuilder
from .reconcile import (
    RollNotesResult,
    normalize_timeline_to_baseline,
    create_roll_notes_result,
    timelines_match,
)

__all__ = [
    "MidiPitchInfo",
    "TimingEvent",
    "TimingDerivedData",
    "NotePlaybackEvent",
    "normalize_midi_pitches",
    "MeasureBoundaryAccumulator",
    "BaselineTimelineBuilder",
    "BaselineResult",
    "TieState",
    "EventStreamTimelineBuilder",
    "RollNotesResult",
    "normalize_timeline_to_baseline",
    "create_roll_notes_result",
    "timelines_match",
]
