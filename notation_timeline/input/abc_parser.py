"""ABC notation parser - builds a structural tree with source offsets.

The tree mirrors how an ABC renderer lays out a tune:
``tune.lines -> staves -> voices -> elements``. Every element keeps the
absolute character range it was parsed from, so timing data can be traced
back to the text for cursor highlighting.

Durations are exact ``Fraction`` values in whole notes. Pitches are left
symbolic (step, octave, accidental); resolving them against the key
signature is the timeline builder's job.
"""

import re
from collections import OrderedDict
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Dict, List, Optional, Tuple

from ..core.errors import AbcParseError
from .keys import KeySignature, parse_key


@dataclass
class TempoMark:
    """A ``Q:`` field: ``bpm`` beats of ``beat_length`` whole notes per minute."""

    bpm: float
    beat_length: Fraction


@dataclass
class AbcPitch:
    step: str  # Diatonic step, upper case
    octave: int  # 0 = octave starting at middle C
    accidental: Optional[str] = None
    tie_start: bool = False
    tie_end: bool = False


@dataclass
class AbcElement:
    start_char: int
    end_char: int


@dataclass
class NoteElement(AbcElement):
    pitches: List[AbcPitch] = field(default_factory=list)
    duration: Fraction = Fraction(0)

    @property
    def is_chord(self) -> bool:
        return len(self.pitches) > 1


@dataclass
class RestElement(AbcElement):
    duration: Fraction = Fraction(0)
    invisible: bool = False


@dataclass
class BarElement(AbcElement):
    bar_type: str = "|"


@dataclass
class KeyChangeElement(AbcElement):
    key: KeySignature = field(default_factory=KeySignature)


@dataclass
class MeterChangeElement(AbcElement):
    meter: Optional[Tuple[int, int]] = None


@dataclass
class LengthChangeElement(AbcElement):
    length: Fraction = Fraction(1, 8)


@dataclass
class TempoChangeElement(AbcElement):
    tempo: Optional[TempoMark] = None


@dataclass
class AbcVoice:
    voice_id: str
    elements: List[AbcElement] = field(default_factory=list)


@dataclass
class AbcStaff:
    voices: List[AbcVoice] = field(default_factory=list)


@dataclass
class AbcLine:
    staves: List[AbcStaff] = field(default_factory=list)


@dataclass
class AbcTune:
    """Parsed tune: header fields plus the body tree."""

    title: str = ""
    meter: Optional[Tuple[int, int]] = None
    unit_length: Fraction = Fraction(1, 8)
    tempo: Optional[TempoMark] = None
    key: KeySignature = field(default_factory=KeySignature)
    lines: List[AbcLine] = field(default_factory=list)

    def voice_streams(self) -> "OrderedDict[Tuple[int, int], List[AbcElement]]":
        """All elements per (staff, voice), concatenated across lines."""
        streams: "OrderedDict[Tuple[int, int], List[AbcElement]]" = OrderedDict()
        for line in self.lines:
            for staff_index, staff in enumerate(line.staves):
                for voice_index, voice in enumerate(staff.voices):
                    key = (staff_index, voice_index)
                    streams.setdefault(key, []).extend(voice.elements)
        return OrderedDict(sorted(streams.items()))

    @property
    def note_count(self) -> int:
        return sum(
            1
            for elements in self.voice_streams().values()
            for element in elements
            if isinstance(element, NoteElement)
        )


# Tokens
_FIELD_LINE_RE = re.compile(r"^([A-Za-z]):(.*)$")
_ACCIDENTAL_RE = re.compile(r"\^\^|\^/|\^|__|_/|_|=")
_LENGTH_RE = re.compile(r"(\d*)(/*)(\d*)")
_BAR_RE = re.compile(r"(?:\[\|\]?|:*\|+\]?|::)[:]*(?:\d+(?:[,-]\d+)*)?")
_TUPLET_RE = re.compile(r"\((\d+)(?::(\d*))?(?::(\d*))?")
_TEMPO_RE = re.compile(r"((?:\d+/\d+\s*)+)=\s*(\d+(?:\.\d+)?)")
_LEADING_VOICE_RE = re.compile(r"\s*\[V:([^\]]*)\]")
_DECORATIONS = set(".~HLMOPSTuv")
_INLINE_FIELDS = set("KMLQVPIN")

# Tuplet q values when only p is given (ABC 2.1, section 4.13)
_TUPLET_Q = {2: 3, 3: 2, 4: 3, 6: 2, 8: 3}


@dataclass
class _VoiceState:
    """Mutable per-voice parsing state."""

    unit_length: Fraction
    meter: Optional[Tuple[int, int]]
    tie_pending: bool = False
    broken: Optional[Tuple[str, int]] = None
    tuplet_ratio: Fraction = Fraction(1)
    tuplet_remaining: int = 0


class AbcParser:
    """Parse ABC text into an ``AbcTune``."""

    DEFAULT_VOICE = "default"

    def parse(self, text: str) -> AbcTune:
        """
        Parse the first tune in ``text``.

        Args:
            text: ABC notation

        Returns:
            AbcTune (empty when the text holds no music)

        Raises:
            AbcParseError: On malformed notation
        """
        tune = AbcTune()
        self._text = text
        self._tune = tune
        self._staff_of_voice: Dict[str, int] = {}
        self._states: Dict[str, _VoiceState] = {}
        self._current_voice = self.DEFAULT_VOICE
        self._current_line: Optional[AbcLine] = None
        self._active_voice: Optional[AbcVoice] = None
        self._line_voices: set = set()
        self._continued = False

        in_header = True
        unit_length_set = False
        seen_x = False

        offset = 0
        for raw_line in text.splitlines(keepends=True):
            line_start = offset
            offset += len(raw_line)
            line = raw_line.rstrip("\r\n")
            stripped = line.strip()

            if not stripped or stripped.startswith("%"):
                continue

            field_match = _FIELD_LINE_RE.match(line)
            if field_match and not (line.startswith("|") or line.startswith("[")):
                name, value = field_match.groups()
                if name == "X":
                    if seen_x:
                        break  # only the first tune
                    seen_x = True
                    continue
                if in_header:
                    if name == "L":
                        unit_length_set = True
                    self._header_field(name, value, line_start + 2)
                    if name == "K":
                        in_header = False
                        if not unit_length_set:
                            tune.unit_length = self._default_unit_length(tune.meter)
                    continue
                self._body_field(name, value, line_start, line_start + len(line))
                continue

            if in_header:
                # Music without a K: field; start the body with defaults
                in_header = False
                if not unit_length_set:
                    tune.unit_length = self._default_unit_length(tune.meter)

            self._music_line(line, line_start)

        return tune

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def _header_field(self, name: str, value: str, position: int) -> None:
        tune = self._tune
        value = value.strip()
        if name == "T" and not tune.title:
            tune.title = value
        elif name == "M":
            tune.meter = self._parse_meter(value, position)
        elif name == "L":
            tune.unit_length = self._parse_fraction(value, position)
        elif name == "Q":
            tune.tempo = self._parse_tempo(value, tune.unit_length)
        elif name == "K":
            tune.key = parse_key(value)
        elif name == "V":
            self._current_voice = self._voice_id(value, position)

    def _body_field(self, name: str, value: str, start: int, end: int) -> None:
        if name == "V":
            self._switch_voice(self._voice_id(value, start + 2))
            return
        element = self._field_element(name, value.strip(), start, end)
        if element is not None:
            self._append(element)

    def _field_element(
        self, name: str, value: str, start: int, end: int
    ) -> Optional[AbcElement]:
        state = self._state()
        if name == "K":
            return KeyChangeElement(start_char=start, end_char=end, key=parse_key(value))
        if name == "M":
            meter = self._parse_meter(value, start)
            state.meter = meter
            return MeterChangeElement(start_char=start, end_char=end, meter=meter)
        if name == "L":
            length = self._parse_fraction(value, start)
            state.unit_length = length
            return LengthChangeElement(start_char=start, end_char=end, length=length)
        if name == "Q":
            tempo = self._parse_tempo(value, state.unit_length)
            return TempoChangeElement(start_char=start, end_char=end, tempo=tempo)
        # P:, w:, W:, T:, N: and the rest carry no timing
        return None

    @staticmethod
    def _default_unit_length(meter: Optional[Tuple[int, int]]) -> Fraction:
        if meter is not None and Fraction(meter[0], meter[1]) < Fraction(3, 4):
            return Fraction(1, 16)
        return Fraction(1, 8)

    def _parse_meter(self, value: str, position: int) -> Optional[Tuple[int, int]]:
        value = value.split("%")[0].strip()
        if not value or value.lower() == "none":
            return None
        if value == "C":
            return (4, 4)
        if value == "C|":
            return (2, 2)
        head, slash, tail = value.partition("/")
        if not slash:
            raise AbcParseError(f"Invalid meter '{value}'", position)
        try:
            numerator = sum(int(part) for part in head.strip("()").split("+"))
            denominator = int(tail.split()[0])
        except (ValueError, IndexError):
            raise AbcParseError(f"Invalid meter '{value}'", position)
        if numerator <= 0 or denominator <= 0:
            raise AbcParseError(f"Invalid meter '{value}'", position)
        return (numerator, denominator)

    def _parse_fraction(self, value: str, position: int) -> Fraction:
        value = value.split("%")[0].strip()
        try:
            result = Fraction(value)
        except (ValueError, ZeroDivisionError):
            raise AbcParseError(f"Invalid length '{value}'", position)
        if result <= 0:
            raise AbcParseError(f"Invalid length '{value}'", position)
        return result

    @staticmethod
    def _parse_tempo(value: str, unit_length: Fraction) -> Optional[TempoMark]:
        text = re.sub(r'"[^"]*"', " ", value.split("%")[0])
        match = _TEMPO_RE.search(text)
        if match:
            beats, bpm = match.groups()
            beat_length = sum((Fraction(part) for part in beats.split()), Fraction(0))
            return TempoMark(bpm=float(bpm), beat_length=beat_length)
        bare = re.search(r"^\s*(\d+(?:\.\d+)?)\s*$", text)
        if bare:
            return TempoMark(bpm=float(bare.group(1)), beat_length=unit_length)
        return None

    @staticmethod
    def _voice_id(value: str, position: int) -> str:
        tokens = value.split()
        if not tokens:
            raise AbcParseError("Empty voice field", position)
        return tokens[0]

    # ------------------------------------------------------------------
    # Voices and lines
    # ------------------------------------------------------------------

    def _state(self, voice_id: Optional[str] = None) -> _VoiceState:
        voice_id = voice_id or self._current_voice
        if voice_id not in self._states:
            self._states[voice_id] = _VoiceState(
                unit_length=self._tune.unit_length,
                meter=self._tune.meter,
            )
        return self._states[voice_id]

    def _switch_voice(self, voice_id: str) -> None:
        self._current_voice = voice_id
        self._continued = False

    def _voice_in_line(self) -> AbcVoice:
        """Voice container for the current voice in the current line."""
        voice_id = self._current_voice
        needs_line = self._current_line is None or (
            voice_id in self._line_voices and not self._continued
        )
        if needs_line:
            self._current_line = AbcLine()
            self._tune.lines.append(self._current_line)
            self._line_voices = set()

        if voice_id not in self._staff_of_voice:
            self._staff_of_voice[voice_id] = len(self._staff_of_voice)
        staff_index = self._staff_of_voice[voice_id]

        staves = self._current_line.staves
        while len(staves) <= staff_index:
            staves.append(AbcStaff())
        staff = staves[staff_index]
        if not staff.voices:
            staff.voices.append(AbcVoice(voice_id=voice_id))
        self._line_voices.add(voice_id)
        self._active_voice = staff.voices[0]
        return self._active_voice

    def _append(self, element: AbcElement) -> None:
        active = self._active_voice
        if active is not None and active.voice_id == self._current_voice:
            active.elements.append(element)
        else:
            self._voice_in_line().elements.append(element)

    # ------------------------------------------------------------------
    # Music
    # ------------------------------------------------------------------

    def _music_line(self, line: str, base: int) -> None:
        i = 0
        leading = _LEADING_VOICE_RE.match(line)
        if leading:
            self._switch_voice(self._voice_id(leading.group(1), base + leading.start(1)))
            i = leading.end()
        voice = self._voice_in_line()
        self._continued = False
        n = len(line)

        while i < n:
            ch = line[i]
            state = self._state()

            if ch in " \t`y":
                i += 1
            elif ch == "%":
                break
            elif ch == "\\":
                if line[i + 1:].strip() and not line[i + 1:].strip().startswith("%"):
                    raise AbcParseError("Unexpected text after continuation", base + i)
                self._continued = True
                break
            elif ch == '"':
                i = self._skip_to(line, i, '"', base)
            elif ch == "!":
                i = self._skip_to(line, i, "!", base)
            elif ch == "+":
                i = self._skip_to(line, i, "+", base)
            elif ch == "{":
                i = self._skip_to(line, i, "}", base)
            elif ch in _DECORATIONS:
                i += 1
            elif ch == "(":
                tuplet = _TUPLET_RE.match(line, i)
                if tuplet:
                    self._start_tuplet(tuplet, state)
                    i = tuplet.end()
                else:
                    i += 1  # slur
            elif ch == ")":
                i += 1
            elif ch == "-":
                self._mark_tie(voice, base + i)
                i += 1
            elif ch in "<>":
                j = i
                while j < n and line[j] == ch:
                    j += 1
                self._mark_broken(voice, ch, j - i, base + i)
                i = j
            elif ch == "[":
                i = self._bracket(line, i, base, voice)
                voice = self._active_voice
            elif ch in "|:":
                i = self._bar(line, i, base, voice)
            elif ch in "zxZX":
                i = self._rest(line, i, base, voice)
            elif ch in "^_=" or ch.upper() in "ABCDEFG":
                i = self._note(line, i, base, voice)
            else:
                raise AbcParseError(f"Unexpected character '{ch}'", base + i)

    def _skip_to(self, line: str, i: int, closing: str, base: int) -> int:
        end = line.find(closing, i + 1)
        if end < 0:
            raise AbcParseError(f"Unterminated '{line[i]}'", base + i)
        return end + 1

    def _bracket(self, line: str, i: int, base: int, voice: AbcVoice) -> int:
        nxt = line[i + 1] if i + 1 < len(line) else ""
        if nxt == "|":
            return self._bar(line, i, base, voice)
        if nxt.isdigit():
            # Volta bracket "[1": timing is unaffected
            j = i + 1
            while j < len(line) and (line[j].isdigit() or line[j] in ",-"):
                j += 1
            return j
        if nxt in _INLINE_FIELDS and line[i + 2:i + 3] == ":":
            end = line.find("]", i)
            if end < 0:
                raise AbcParseError("Unterminated inline field", base + i)
            name = nxt
            value = line[i + 3:end].strip()
            if name == "V":
                self._switch_voice(self._voice_id(value, base + i))
                # Inline voice switch continues on the same line
                self._continued = True
                self._voice_in_line()
                self._continued = False
            else:
                element = self._field_element(name, value, base + i, base + end + 1)
                if element is not None:
                    self._append(element)
            return end + 1
        return self._chord(line, i, base, voice)

    def _bar(self, line: str, i: int, base: int, voice: AbcVoice) -> int:
        match = _BAR_RE.match(line, i)
        if not match or match.end() == i:
            raise AbcParseError(f"Invalid bar line '{line[i]}'", base + i)
        voice.elements.append(
            BarElement(
                start_char=base + i,
                end_char=base + match.end(),
                bar_type=match.group(0),
            )
        )
        return match.end()

    def _rest(self, line: str, i: int, base: int, voice: AbcVoice) -> int:
        ch = line[i]
        state = self._state()
        j = i + 1
        if ch in "ZX":
            digits = re.match(r"\d*", line[j:]).group(0)
            measures = int(digits) if digits else 1
            j += len(digits)
            meter = state.meter or (4, 4)
            duration = Fraction(meter[0], meter[1]) * measures
        else:
            factor, j = self._length(line, j, base)
            duration = state.unit_length * factor

        duration = self._apply_tuplet(duration, state)
        rest = RestElement(
            start_char=base + i,
            end_char=base + j,
            duration=duration,
            invisible=ch in "xX",
        )
        self._apply_broken(voice, rest, state)
        state.tie_pending = False
        voice.elements.append(rest)
        return j

    def _note(self, line: str, i: int, base: int, voice: AbcVoice) -> int:
        state = self._state()
        pitch, factor, j = self._pitch(line, i, base)
        note = NoteElement(
            start_char=base + i,
            end_char=base + j,
            pitches=[pitch],
            duration=self._apply_tuplet(state.unit_length * factor, state),
        )
        self._append_note(voice, note, state)
        return j

    def _chord(self, line: str, i: int, base: int, voice: AbcVoice) -> int:
        state = self._state()
        pitches: List[AbcPitch] = []
        first_factor: Optional[Fraction] = None
        j = i + 1
        while True:
            if j >= len(line):
                raise AbcParseError("Unterminated chord", base + i)
            ch = line[j]
            if ch == "]":
                j += 1
                break
            if ch in " \t" or ch in _DECORATIONS:
                j += 1
            elif ch == "!":
                j = self._skip_to(line, j, "!", base)
            elif ch == "-":
                if not pitches:
                    raise AbcParseError("Tie before any chord note", base + j)
                pitches[-1].tie_start = True
                j += 1
            else:
                pitch, factor, j = self._pitch(line, j, base)
                pitches.append(pitch)
                if first_factor is None:
                    first_factor = factor

        if not pitches:
            raise AbcParseError("Empty chord", base + i)

        outer, j = self._length(line, j, base)
        note = NoteElement(
            start_char=base + i,
            end_char=base + j,
            pitches=pitches,
            duration=self._apply_tuplet(
                state.unit_length * first_factor * outer, state
            ),
        )
        self._append_note(voice, note, state)
        return j

    def _pitch(self, line: str, i: int, base: int) -> Tuple[AbcPitch, Fraction, int]:
        accidental = None
        acc = _ACCIDENTAL_RE.match(line, i)
        j = i
        if acc:
            accidental = acc.group(0)
            j = acc.end()
        if j >= len(line) or line[j].upper() not in "ABCDEFG":
            raise AbcParseError("Expected a note letter", base + j)
        letter = line[j]
        octave = 1 if letter.islower() else 0
        j += 1
        while j < len(line) and line[j] in "',":
            octave += 1 if line[j] == "'" else -1
            j += 1
        factor, j = self._length(line, j, base)
        pitch = AbcPitch(step=letter.upper(), octave=octave, accidental=accidental)
        return pitch, factor, j

    @staticmethod
    def _length(line: str, i: int, base: int) -> Tuple[Fraction, int]:
        match = _LENGTH_RE.match(line, i)
        numerator_text, slashes, denominator_text = match.groups()
        numerator = int(numerator_text) if numerator_text else 1
        slash_count = len(slashes)
        if slash_count == 0:
            return Fraction(numerator), match.end()
        if denominator_text:
            denominator = int(denominator_text) * 2 ** (slash_count - 1)
        else:
            denominator = 2 ** slash_count
        if denominator == 0:
            raise AbcParseError("Zero note length denominator", base + i)
        return Fraction(numerator, denominator), match.end()

    # ------------------------------------------------------------------
    # Rhythm modifiers
    # ------------------------------------------------------------------

    def _start_tuplet(self, match: "re.Match", state: _VoiceState) -> None:
        p = int(match.group(1))
        q_text, r_text = match.group(2), match.group(3)
        if q_text:
            q = int(q_text)
        elif p in _TUPLET_Q:
            q = _TUPLET_Q[p]
        else:
            meter = state.meter or (4, 4)
            compound = meter[1] == 8 and meter[0] > 3 and meter[0] % 3 == 0
            q = 3 if compound else 2
        r = int(r_text) if r_text else p
        if p <= 0 or q <= 0:
            return
        state.tuplet_ratio = Fraction(q, p)
        state.tuplet_remaining = r

    @staticmethod
    def _apply_tuplet(duration: Fraction, state: _VoiceState) -> Fraction:
        if state.tuplet_remaining <= 0:
            return duration
        state.tuplet_remaining -= 1
        return duration * state.tuplet_ratio

    def _mark_tie(self, voice: AbcVoice, position: int) -> None:
        last = self._last_timed(voice)
        if not isinstance(last, NoteElement):
            raise AbcParseError("Tie without a preceding note", position)
        for pitch in last.pitches:
            pitch.tie_start = True
        self._state().tie_pending = True

    def _mark_broken(self, voice: AbcVoice, symbol: str, count: int, position: int) -> None:
        last = self._last_timed(voice)
        if last is None:
            raise AbcParseError("Broken rhythm without a preceding note", position)
        self._state().broken = (symbol, count)

    def _apply_broken(self, voice: AbcVoice, element: AbcElement, state: _VoiceState) -> None:
        if state.broken is None:
            return
        symbol, count = state.broken
        state.broken = None
        previous = self._last_timed(voice)
        short = Fraction(1, 2 ** count)
        long = 2 - short
        first, second = (long, short) if symbol == ">" else (short, long)
        if previous is not None:
            previous.duration *= first
        element.duration *= second

    def _append_note(self, voice: AbcVoice, note: NoteElement, state: _VoiceState) -> None:
        self._apply_broken(voice, note, state)
        if state.tie_pending:
            for pitch in note.pitches:
                pitch.tie_end = True
        state.tie_pending = any(pitch.tie_start for pitch in note.pitches)
        voice.elements.append(note)

    def _last_timed(self, voice: AbcVoice) -> Optional[AbcElement]:
        # Search the whole voice stream so ties cross line breaks
        for line in reversed(self._tune.lines):
            staff_index = self._staff_of_voice.get(self._current_voice)
            if staff_index is None or staff_index >= len(line.staves):
                continue
            for candidate in line.staves[staff_index].voices:
                for element in reversed(candidate.elements):
                    if isinstance(element, (NoteElement, RestElement)):
                        return element
        return None
