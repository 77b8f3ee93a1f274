"""Note data class - the fundamental unit of the invariant timeline."""

from dataclasses import dataclass
from typing import Optional
import numpy as np

from .constants import (
    A4_FREQUENCY,
    A4_MIDI,
    PITCH_NAMES,
    PITCH_NAMES_FLAT,
)


@dataclass
class NoteSource:
    """Where a note came from in the notation text."""

    start_char: Optional[int] = None
    end_char: Optional[int] = None
    staff_index: Optional[int] = None
    voice_index: Optional[int] = None


@dataclass
class Note:
    """A note positioned in subdivisions of the written meter.

    Start and duration are tempo-independent: a warp or tempo change only
    alters how many seconds a subdivision lasts, never these fields.
    """

    pitch: float  # MIDI pitch, fractional for microtonal accidentals
    start_subdivision: float
    duration_subdivisions: float
    velocity: int = 80  # MIDI velocity (0-127)
    source: Optional[NoteSource] = None

    @property
    def end_subdivision(self) -> float:
        """End position in subdivisions."""
        return self.start_subdivision + max(0.0, self.duration_subdivisions)

    @property
    def pitch_name(self) -> str:
        """Get note name (e.g., 'C4', 'A#3')."""
        rounded = int(round(self.pitch))
        octave = (rounded // 12) - 1
        name = PITCH_NAMES[rounded % 12]
        return f"{name}{octave}"

    @property
    def frequency(self) -> float:
        """Frequency of the pitch in Hz."""
        return midi_to_frequency(self.pitch)


def midi_to_frequency(midi: float) -> float:
    """Convert MIDI pitch to frequency (Hz). Returns 0 for non-finite input."""
    if not np.isfinite(midi):
        return 0.0
    return A4_FREQUENCY * (2 ** ((midi - A4_MIDI) / 12.0))


def frequency_to_midi(freq: float) -> float:
    """Convert frequency (Hz) to a fractional MIDI pitch.

    Invalid or non-positive frequencies map to A4.
    """
    if not np.isfinite(freq) or freq <= 0:
        return float(A4_MIDI)
    return A4_MIDI + 12 * float(np.log2(freq / A4_FREQUENCY))


def stem_position(f_min: float, f_max: float, f: float) -> float:
    """
    Normalized position (0-1) of a frequency along a stem.

    Uses inverse-frequency scaling so equal pitch steps look evenly spaced
    near the top of the range, the way a fretless stem behaves.

    Args:
        f_min: Lowest frequency of the range (Hz)
        f_max: Highest frequency of the range (Hz)
        f: Frequency to place (Hz)

    Returns:
        0 at f_min, 1 at f_max, clamped to [0, 1]
    """
    values = (f_min, f_max, f)
    if not all(np.isfinite(v) for v in values):
        return 0.0
    if f_min <= 0 or f_max <= 0 or f_max == f_min:
        return 0.0

    clamped = min(max(f, min(f_min, f_max)), max(f_min, f_max))
    inv_min = 1.0 / f_min
    inv_max = 1.0 / f_max
    denominator = inv_max - inv_min
    if denominator == 0:
        return 0.0

    normalized = (1.0 / clamped - inv_min) / denominator
    return min(max(normalized, 0.0), 1.0)


def midi_to_note_name(midi: float) -> str:
    """Note name without octave, e.g. 'C' or 'C#/Db'."""
    if not np.isfinite(midi):
        return ""
    index = int(round(midi)) % 12
    sharp = PITCH_NAMES[index]
    flat = PITCH_NAMES_FLAT[index]
    if sharp == flat:
        return sharp
    return f"{sharp}/{flat}"
