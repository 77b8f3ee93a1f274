"""Input layer - ABC notation parsing.

Turns ABC text into a structural tree (lines, staves, voices, elements)
with character offsets, and resolves key signatures.
"""

from .abc_parser import (
    AbcParser,
    AbcTune,
    AbcLine,
    AbcStaff,
    AbcVoice,
    AbcPitch,
    AbcElement,
    NoteElement,
    RestElement,
    BarElement,
    KeyChangeElement,
    MeterChangeElement,
    LengthChangeElement,
    TempoChangeElement,
    TempoMark,
)
from .keys import KeySignature, parse_key, key_accidentals

__all__ = [
    "AbcParser",
    "AbcTune",
    "AbcLine",
    "AbcStaff",
    "AbcVoice",
    "AbcPitch",
    "AbcElement",
    "NoteElement",
    "RestElement",
    "BarElement",
    "KeyChangeElement",
    "MeterChangeElement",
    "LengthChangeElement",
    "TempoChangeElement",
    "TempoMark",
    "KeySignature",
    "parse_key",
    "key_accidentals",
]
