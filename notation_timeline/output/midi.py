"""MIDI export functionality."""

import pretty_midi
from typing import Optional
from pathlib import Path

from ..core import Timeline
from ..core.constants import MIDI_MAX, MIDI_MIN


class TimelineMIDIExporter:
    """Export a timeline to MIDI at a chosen tempo."""

    def __init__(
        self,
        seconds_per_subdivision: Optional[float] = None,
        instrument_name: str = "Acoustic Grand Piano",
        instrument_program: int = 0,
    ):
        """
        Initialize TimelineMIDIExporter.

        Args:
            seconds_per_subdivision: Tempo to render at (default: the
                timeline's own)
            instrument_name: MIDI instrument name
            instrument_program: MIDI program number (0-127)
        """
        self.seconds_per_subdivision = seconds_per_subdivision
        self.instrument_name = instrument_name
        self.instrument_program = instrument_program

    def _tempo(self, timeline: Timeline) -> float:
        if self.seconds_per_subdivision and self.seconds_per_subdivision > 0:
            return self.seconds_per_subdivision
        return timeline.seconds_per_subdivision

    def qpm(self, timeline: Timeline) -> float:
        """Quarter notes per minute for the MIDI tempo map."""
        seconds_per_quarter = self._tempo(timeline) * timeline.subdivision_unit / 4
        return 60.0 / seconds_per_quarter

    def to_pretty_midi(self, timeline: Timeline) -> pretty_midi.PrettyMIDI:
        """Convert a timeline to a PrettyMIDI object without saving."""
        sps = self._tempo(timeline)
        midi = pretty_midi.PrettyMIDI(initial_tempo=self.qpm(timeline))
        midi.time_signature_changes.append(
            pretty_midi.TimeSignature(
                timeline.subdivisions_per_measure, timeline.subdivision_unit, 0.0
            )
        )

        instrument = pretty_midi.Instrument(
            program=self.instrument_program,
            name=self.instrument_name,
        )

        for note in timeline.notes:
            if note.duration_subdivisions <= 0:
                continue
            # Microtonal pitches are rounded; MIDI notes are semitones
            instrument.notes.append(
                pretty_midi.Note(
                    velocity=int(min(max(note.velocity, MIDI_MIN), MIDI_MAX)),
                    pitch=int(min(max(round(note.pitch), MIDI_MIN), MIDI_MAX)),
                    start=note.start_subdivision * sps,
                    end=note.end_subdivision * sps,
                )
            )

        midi.instruments.append(instrument)
        return midi

    def export(self, timeline: Timeline, output_path: str) -> None:
        """
        Export a timeline to a MIDI file.

        Args:
            timeline: Timeline to write
            output_path: Path to output MIDI file
        """
        midi = self.to_pretty_midi(timeline)

        # Ensure output directory exists
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)

        midi.write(output_path)
