"""Output layer - Export timelines to various formats.

This layer handles exporting timelines to:
- MIDI files (at any tempo)
- MusicXML (for notation software)
- Preview images (numpy RGB arrays)
"""

from .midi import TimelineMIDIExporter
from .musicxml import TimelineMusicXMLExporter
from .preview import PreviewConfig, render_preview

__all__ = [
    "TimelineMIDIExporter",
    "TimelineMusicXMLExporter",
    "PreviewConfig",
    "render_preview",
]
