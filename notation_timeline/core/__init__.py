"""Core types and constants for Notation Timeline."""

from .note import (
    Note,
    NoteSource,
    midi_to_frequency,
    frequency_to_midi,
    stem_position,
    midi_to_note_name,
)
from .timeline import Timeline, empty_timeline
from .errors import (
    TimelineError,
    AbcParseError,
    TimingOrderError,
    EngineUnavailableError,
)
from .constants import (
    PITCH_NAMES,
    DEFAULT_BPM,
    DEFAULT_METER,
    DEFAULT_SECONDS_PER_SUBDIVISION,
    DEFAULT_VELOCITY,
    BOUNDARY_EPSILON,
    UNITY_WARP,
)

__all__ = [
    "Note",
    "NoteSource",
    "Timeline",
    "empty_timeline",
    "midi_to_frequency",
    "frequency_to_midi",
    "stem_position",
    "midi_to_note_name",
    "TimelineError",
    "AbcParseError",
    "TimingOrderError",
    "EngineUnavailableError",
    "PITCH_NAMES",
    "DEFAULT_BPM",
    "DEFAULT_METER",
    "DEFAULT_SECONDS_PER_SUBDIVISION",
    "DEFAULT_VELOCITY",
    "BOUNDARY_EPSILON",
    "UNITY_WARP",
]
