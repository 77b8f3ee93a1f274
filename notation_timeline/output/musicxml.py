"""MusicXML export functionality.

Notes sharing a start become one chord; overlaps are cut at the next
onset and gaps become rests, so the part is a single voice.
"""

from collections import OrderedDict
from pathlib import Path
from typing import List, Tuple

from ..core import Note, Timeline

# Starts closer than this (in subdivisions) are one chord
_ONSET_TOLERANCE = 1e-4


class TimelineMusicXMLExporter:
    """Export a timeline to MusicXML via music21."""

    def __init__(self, title: str = "Notation Timeline"):
        self.title = title

    @staticmethod
    def quarter_length(subdivisions: float, subdivision_unit: int) -> float:
        """Convert subdivisions to music21 quarter lengths."""
        return subdivisions * 4.0 / subdivision_unit

    def _groups(self, timeline: Timeline) -> List[Tuple[float, List[Note]]]:
        groups: "OrderedDict[float, List[Note]]" = OrderedDict()
        for note in sorted(timeline.notes, key=lambda n: (n.start_subdivision, n.pitch)):
            key = note.start_subdivision
            for existing in groups:
                if abs(existing - key) < _ONSET_TOLERANCE:
                    key = existing
                    break
            groups.setdefault(key, []).append(note)
        return list(groups.items())

    def build_score(self, timeline: Timeline):
        """
        Build a music21 Score for a timeline.

        Returns:
            music21.stream.Score
        """
        try:
            from music21 import stream, note as m21_note, chord as m21_chord
            from music21 import tempo as m21_tempo, meter, metadata
        except ImportError:
            raise ImportError("music21 is required for MusicXML export")

        score = stream.Score()
        score.metadata = metadata.Metadata()
        score.metadata.title = self.title

        part = stream.Part()
        unit = timeline.subdivision_unit

        qpm = 60.0 / (timeline.seconds_per_subdivision * unit / 4)
        part.append(m21_tempo.MetronomeMark(number=round(qpm, 3)))
        part.append(meter.TimeSignature(f"{timeline.subdivisions_per_measure}/{unit}"))

        groups = self._groups(timeline)
        cursor = 0.0
        for index, (start, notes) in enumerate(groups):
            if start - cursor > _ONSET_TOLERANCE:
                rest = m21_note.Rest()
                rest.duration.quarterLength = self.quarter_length(start - cursor, unit)
                part.append(rest)

            length = max(n.duration_subdivisions for n in notes)
            if index + 1 < len(groups):
                length = min(length, groups[index + 1][0] - start)
            if length <= _ONSET_TOLERANCE:
                continue

            pitches = sorted({int(round(n.pitch)) for n in notes})
            if len(pitches) == 1:
                element = m21_note.Note()
                element.pitch.midi = pitches[0]
            else:
                element = m21_chord.Chord(pitches)
            element.duration.quarterLength = self.quarter_length(length, unit)
            element.volume.velocity = max(n.velocity for n in notes)
            part.append(element)
            cursor = start + length

        score.append(part)
        return score

    def export(self, timeline: Timeline, output_path: str) -> None:
        """
        Export a timeline to a MusicXML file.

        Args:
            timeline: Timeline to write
            output_path: Path to output MusicXML file
        """
        score = self.build_score(timeline)

        # Ensure output directory exists
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)

        score.write("musicxml", fp=output_path)
