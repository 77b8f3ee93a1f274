"""Notation Timeline - Tempo-invariant timelines for ABC notation playback.

Architecture Layers:
    1. core/      - Note and Timeline types, constants, errors
    2. input/     - ABC parsing and key signatures
    3. analysis/  - Meter structure (subdivisions, beat grouping)
    4. timeline/  - Baseline and event-stream timeline builders
    5. playback/  - Engine glue, tempo resync, frame loop, highlighting
    6. output/    - Export (MIDI, MusicXML, preview image)
"""

__version__ = "0.1.0"

# Core types
from .core import Note, NoteSource, Timeline

# Input layer
from .input import AbcParser, parse_key

# Analysis layer
from .analysis import MeterAnalyzer, MeterInfo

# Timeline layer
from .timeline import (
    BaselineTimelineBuilder,
    EventStreamTimelineBuilder,
    create_roll_notes_result,
)

# Playback layer
from .playback import (
    PlaybackController,
    ReferenceEngine,
    TempoResynchronizer,
)

# Output layer
from .output import TimelineMIDIExporter, TimelineMusicXMLExporter, render_preview

__all__ = [
    # Core
    "Note",
    "NoteSource",
    "Timeline",
    # Input
    "AbcParser",
    "parse_key",
    # Analysis
    "MeterAnalyzer",
    "MeterInfo",
    # Timeline
    "BaselineTimelineBuilder",
    "EventStreamTimelineBuilder",
    "create_roll_notes_result",
    # Playback
    "PlaybackController",
    "ReferenceEngine",
    "TempoResynchronizer",
    # Output
    "TimelineMIDIExporter",
    "TimelineMusicXMLExporter",
    "render_preview",
]
