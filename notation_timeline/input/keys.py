"""Key signatures - per-step accidental tables for ABC ``K:`` fields."""

import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from music21 import key as m21_key

from ..core.constants import MIDDLE_C
from ..core.errors import AbcParseError

# Semitones above C for each diatonic step
STEP_SEMITONES = {"C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11}

ACCIDENTAL_OFFSETS = {
    "^^": 2.0,
    "^": 1.0,
    "^/": 0.5,
    "=": 0.0,
    "_/": -0.5,
    "_": -1.0,
    "__": -2.0,
}

MODE_NAMES = {
    "": "major",
    "maj": "major",
    "ion": "major",
    "m": "minor",
    "min": "minor",
    "aeo": "minor",
    "dor": "dorian",
    "phr": "phrygian",
    "lyd": "lydian",
    "mix": "mixolydian",
    "loc": "locrian",
}

_TONIC_RE = re.compile(r"^([A-Ga-g])([#b]?)(.*)$")
_EXPLICIT_RE = re.compile(r"^(\^\^|\^/|\^|__|_/|_|=)([A-Ga-g])$")


@dataclass
class KeySignature:
    """Parsed ``K:`` field."""

    tonic: Optional[str] = None  # e.g. "Bb", "F#"; None for K:none / K:HP
    mode: str = "major"
    accidentals: Dict[str, float] = field(default_factory=dict)  # step -> semitones

    def offset_for(self, step: str) -> float:
        """Key-signature accidental for a diatonic step (0 if unaltered)."""
        return self.accidentals.get(step.upper(), 0.0)

    @property
    def name(self) -> str:
        if self.tonic is None:
            return "none"
        return f"{self.tonic} {self.mode}"


def key_accidentals(tonic: str, mode: str = "major") -> Dict[str, float]:
    """
    Accidental table for a key, via music21.

    Args:
        tonic: Tonic in ABC spelling ("Bb", "F#", "C")
        mode: music21 mode name ("major", "minor", "dorian", ...)

    Returns:
        Mapping of diatonic step to semitone offset, only altered steps
    """
    m21_tonic = tonic[0].upper() + tonic[1:].replace("b", "-")
    try:
        signature = m21_key.Key(m21_tonic, mode)
    except Exception as e:
        raise AbcParseError(f"Unknown key '{tonic} {mode}': {e}")

    table = {}
    for pitch in signature.alteredPitches:
        if pitch.accidental is not None:
            table[pitch.step] = float(pitch.accidental.alter)
    return table


def parse_key(text: str) -> KeySignature:
    """
    Parse the value of a ``K:`` field.

    Handles tonic + mode ("Bb", "Dm", "F#mix", "A minor"), "none"/"HP",
    clef and other ``name=value`` clauses (ignored), and explicit global
    accidentals ("K:D ^g _b").
    """
    tokens = text.split("%")[0].split()
    if not tokens:
        return KeySignature()

    signature = KeySignature()
    head = tokens[0]
    rest = tokens[1:]

    if head.lower() in ("none", "hp"):
        signature = KeySignature(tonic=None, mode="none")
    elif "=" not in head and _TONIC_RE.match(head):
        letter, accidental, mode_text = _TONIC_RE.match(head).groups()
        if not mode_text and rest and _mode_key(rest[0]) is not None:
            mode_text = rest.pop(0)
        mode_key = _mode_key(mode_text)
        if mode_key is None:
            raise AbcParseError(f"Unknown mode '{mode_text}' in key '{text}'")
        tonic = letter.upper() + accidental
        mode = MODE_NAMES[mode_key]
        signature = KeySignature(
            tonic=tonic,
            mode=mode,
            accidentals=key_accidentals(tonic, mode),
        )
    else:
        # K:clef=bass and friends
        rest = tokens

    for token in rest:
        explicit = _EXPLICIT_RE.match(token)
        if explicit:
            symbol, step = explicit.groups()
            signature.accidentals[step.upper()] = ACCIDENTAL_OFFSETS[symbol]

    return signature


def _mode_key(text: str) -> Optional[str]:
    lowered = text.lower()
    if lowered in ("", "m"):
        return lowered
    prefix = lowered[:3]
    if prefix in MODE_NAMES:
        return prefix
    return None


class AccidentalState:
    """Key-signature and in-measure accidentals of one voice.

    Explicit accidentals hold for the same step and octave until the next
    bar line.
    """

    def __init__(self, key: Optional[KeySignature] = None):
        self.key_accidentals: Dict[str, float] = dict(key.accidentals) if key else {}
        self.measure_accidentals: Dict[Tuple[str, int], float] = {}

    def set_key(self, key: KeySignature) -> None:
        self.key_accidentals = dict(key.accidentals)
        self.measure_accidentals.clear()

    def bar(self) -> None:
        self.measure_accidentals.clear()

    def resolve(self, step: str, octave: int, accidental: Optional[str] = None) -> float:
        """MIDI number of a pitch; integral pitches come back as ``int``."""
        slot = (step, octave)
        if accidental is not None:
            offset = ACCIDENTAL_OFFSETS[accidental]
            self.measure_accidentals[slot] = offset
        elif slot in self.measure_accidentals:
            offset = self.measure_accidentals[slot]
        else:
            offset = self.key_accidentals.get(step, 0.0)
        value = MIDDLE_C + octave * 12 + STEP_SEMITONES[step] + offset
        return int(value) if float(value).is_integer() else value
