"""Timing event shapes reported by a rendering/playback engine.

Engines report timing as loosely-typed dictionaries with camelCase keys
(``milliseconds``, ``midiPitches``, ``startCharArray``...). These are
normalized once into dataclasses so the builders never probe raw dicts.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..core.constants import DEFAULT_SECONDS_PER_SUBDIVISION
from ..core.timeline import Timeline


def _number(value: Any) -> Optional[float]:
    """Finite number or None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def _int(value: Any) -> Optional[int]:
    number = _number(value)
    return None if number is None else int(number)


def _flag(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def _char_array(value: Any) -> Optional[List[Optional[int]]]:
    if not isinstance(value, (list, tuple)):
        return None
    return [_int(item) for item in value]


def _get(raw: Any, key: str) -> Any:
    if isinstance(raw, Mapping):
        return raw.get(key)
    return getattr(raw, key, None)


@dataclass
class MidiPitchInfo:
    """One pitch of a timing event.

    ``start`` and ``duration`` are in whole notes and do not depend on tempo.
    """

    pitch: float
    volume: Optional[float] = None
    start: Optional[float] = None
    duration: Optional[float] = None

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["MidiPitchInfo"]:
        """Build from an engine dict; None when the pitch is missing."""
        if raw is None:
            return None
        pitch = _number(_get(raw, "pitch"))
        if pitch is None:
            return None
        return cls(
            pitch=pitch,
            volume=_number(_get(raw, "volume")),
            start=_number(_get(raw, "start")),
            duration=_number(_get(raw, "duration")),
        )


@dataclass
class TimingEvent:
    """A single engine timing event.

    ``milliseconds`` and ``duration`` are real elapsed time and scale with
    warp. Position-type events (``bar``/``measure``) carry no pitches.
    """

    type: Optional[str] = None  # "event", "bar", "measure", "end"
    milliseconds: Optional[float] = None
    duration: Optional[float] = None  # ms
    start_char: Optional[int] = None
    end_char: Optional[int] = None
    start_char_array: Optional[List[Optional[int]]] = None
    end_char_array: Optional[List[Optional[int]]] = None
    midi_pitches: Optional[List[Optional[MidiPitchInfo]]] = None
    measure_number: Optional[int] = None
    bar_number: Optional[int] = None
    measure_start: Optional[bool] = None
    milliseconds_per_measure: Optional[float] = None

    @classmethod
    def from_raw(cls, raw: Any) -> "TimingEvent":
        """
        Normalize an engine event.

        Args:
            raw: Mapping with the engine's camelCase keys, an object with
                the same attributes, or an existing TimingEvent

        Returns:
            TimingEvent with non-numeric fields dropped to None
        """
        if isinstance(raw, TimingEvent):
            return raw

        raw_pitches = _get(raw, "midiPitches")
        pitches = None
        if isinstance(raw_pitches, (list, tuple)):
            pitches = [MidiPitchInfo.from_raw(item) for item in raw_pitches]

        event_type = _get(raw, "type")
        return cls(
            type=event_type if isinstance(event_type, str) else None,
            milliseconds=_number(_get(raw, "milliseconds")),
            duration=_number(_get(raw, "duration")),
            start_char=_int(_get(raw, "startChar")),
            end_char=_int(_get(raw, "endChar")),
            start_char_array=_char_array(_get(raw, "startCharArray")),
            end_char_array=_char_array(_get(raw, "endCharArray")),
            midi_pitches=pitches,
            measure_number=_int(_get(raw, "measureNumber")),
            bar_number=_int(_get(raw, "barNumber")),
            measure_start=_flag(_get(raw, "measureStart")),
            milliseconds_per_measure=_number(_get(raw, "millisecondsPerMeasure")),
        )

    @property
    def is_note_event(self) -> bool:
        return self.type == "event" and self.midi_pitches is not None

    @property
    def is_position_event(self) -> bool:
        return self.type in ("bar", "measure")

    @property
    def measure_index(self) -> Optional[int]:
        """``measureNumber``, else ``barNumber``."""
        if self.measure_number is not None:
            return self.measure_number
        return self.bar_number

    def start_chars(self) -> List[Optional[int]]:
        if self.start_char_array is not None:
            return list(self.start_char_array)
        return [self.start_char]

    def char_range_for(self, index: int) -> tuple:
        """(start_char, end_char) of the pitch at ``index``."""
        if self.start_char_array is not None:
            start = _at(self.start_char_array, index)
        else:
            start = self.start_char
        if self.end_char_array is not None:
            end = _at(self.end_char_array, index)
        else:
            end = self.end_char
        return start, end


def _at(values: List[Optional[int]], index: int) -> Optional[int]:
    return values[index] if 0 <= index < len(values) else None


def normalize_midi_pitches(raw: Any) -> List[float]:
    """
    Clean MIDI pitches from an engine event.

    Accepts plain numbers and ``{"pitch": n}`` / ``{"midi": n}`` objects;
    anything else is dropped.

    Examples:
        >>> normalize_midi_pitches([60, 64, 67])
        [60, 64, 67]
        >>> normalize_midi_pitches([{"pitch": 60}, {"midi": 64}, "x"])
        [60, 64]
    """
    if not isinstance(raw, (list, tuple)):
        return []

    pitches = []
    for item in raw:
        value = _number(item)
        if value is None and item is not None and not isinstance(item, (int, float, str)):
            candidate = _get(item, "pitch")
            if candidate is None:
                candidate = _get(item, "midi")
            value = _number(candidate)
        if value is not None:
            pitches.append(value)
    return pitches


@dataclass
class TimingDerivedData:
    """Event-stream build result."""

    char_map: Dict[int, float] = field(default_factory=dict)  # char -> seconds
    timeline: Timeline = field(default_factory=Timeline)
    seconds_per_subdivision: float = DEFAULT_SECONDS_PER_SUBDIVISION


@dataclass
class NotePlaybackEvent:
    """A note-on notification emitted during playback."""

    sequence_id: int
    time_seconds: float
    midi_pitches: List[float] = field(default_factory=list)
    duration_seconds: Optional[float] = None
    start_char: Optional[int] = None
    end_char: Optional[int] = None
