"""Note highlighting - map playback events to timeline notes."""

from typing import Dict, List, Mapping, Optional

from ..core.constants import CHORD_ALIGNMENT_TOLERANCE
from ..core.timeline import Timeline
from ..timeline.events import NotePlaybackEvent


class NoteHighlighter:
    """
    Track which timeline note is sounding.

    Single-pitch events are matched by source character offset. Chords, and
    events without a usable offset, are matched by pitch and timing: the
    chord's top pitch is preferred, then the nearest start, with starts
    closer than ``tolerance`` subdivisions treated as simultaneous.
    """

    def __init__(
        self,
        timeline: Timeline,
        char_map: Optional[Mapping[int, float]] = None,
        tolerance: float = CHORD_ALIGNMENT_TOLERANCE,
        char_map_seconds_per_subdivision: Optional[float] = None,
    ):
        """
        Initialize NoteHighlighter.

        Args:
            timeline: Timeline whose notes are highlighted
            char_map: Character offset to start time in seconds
            tolerance: Chord alignment tolerance in subdivisions
            char_map_seconds_per_subdivision: Tempo the char map was
                recorded at (default: the timeline's current tempo)
        """
        self.timeline = timeline
        self.char_map = dict(char_map or {})
        self.tolerance = tolerance
        if char_map_seconds_per_subdivision is None:
            char_map_seconds_per_subdivision = timeline.seconds_per_subdivision
        self.char_map_seconds_per_subdivision = char_map_seconds_per_subdivision
        self.latest_sequence_id = 0
        self.active_index: Optional[int] = None
        self._index_by_char = self._build_char_index()
        self._starts = self._adjusted_starts()

    def _build_char_index(self) -> Dict[int, int]:
        # Highest pitch wins when notes share an offset
        index_by_char: Dict[int, int] = {}
        notes = self.timeline.notes
        for index, note in enumerate(notes):
            char = note.source.start_char if note.source else None
            if char is None:
                continue
            existing = index_by_char.get(char)
            if existing is None or note.pitch > notes[existing].pitch:
                index_by_char[char] = index
        return index_by_char

    def _adjusted_starts(self) -> List[float]:
        # Char map times stay at the tempo they were recorded at
        starts = []
        sps = self.char_map_seconds_per_subdivision
        for note in self.timeline.notes:
            char = note.source.start_char if note.source else None
            if char is not None and char in self.char_map and sps > 0:
                starts.append(self.char_map[char] / sps)
            else:
                starts.append(note.start_subdivision)
        return starts

    def find_note_index(self, event: NotePlaybackEvent) -> Optional[int]:
        """Index of the note an event refers to, or None."""
        is_chord = len(event.midi_pitches) > 1
        if not is_chord and event.start_char is not None:
            match = self._index_by_char.get(event.start_char)
            if match is not None:
                return match

        if not event.midi_pitches:
            return None

        sps = self.timeline.seconds_per_subdivision
        event_position = event.time_seconds / sps if sps > 0 else None
        pitches = set(event.midi_pitches)
        top_pitch = max(event.midi_pitches)

        best_index = None
        best_delta = float("inf")
        best_pitch = float("-inf")
        best_priority = -1

        for index, note in enumerate(self.timeline.notes):
            if note.pitch not in pitches:
                continue
            if event_position is None:
                delta = float("inf")
            else:
                delta = abs(self._starts[index] - event_position)
            priority = 1 if note.pitch == top_pitch else 0

            clearly_closer = delta + self.tolerance < best_delta
            similar_timing = abs(delta - best_delta) <= self.tolerance
            if priority > best_priority or (
                priority == best_priority
                and (
                    clearly_closer
                    or (similar_timing and (best_index is None or note.pitch > best_pitch))
                )
            ):
                best_priority = priority
                best_delta = delta
                best_index = index
                best_pitch = note.pitch

        return best_index

    def highlight(self, event: Optional[NotePlaybackEvent]) -> Optional[int]:
        """
        Update the active note for a new event.

        Events whose sequence id is not above the latest seen are stale and
        leave the active note unchanged. ``None`` clears the highlight.
        """
        if event is None:
            self.active_index = None
            return None
        if event.sequence_id <= self.latest_sequence_id:
            return self.active_index
        self.latest_sequence_id = event.sequence_id
        self.active_index = self.find_note_index(event)
        return self.active_index

    def reset(self) -> None:
        self.latest_sequence_id = 0
        self.active_index = None
