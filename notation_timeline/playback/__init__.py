"""Playback layer - engine glue, tempo resync and visualization sync.

- Engine interfaces and a deterministic reference engine
- Tempo cell and resynchronizer (warp changes touch tempo only)
- Playback controller (owner of the current position)
- Frame loop and note highlighter for the roll view
"""

from .engine import RenderEngine, RenderedTune, TimingCallbacks, SynthController
from .tempo import TempoCell, TempoResynchronizer
from .frame_loop import FrameLoop
from .highlight import NoteHighlighter
from .controller import PlaybackController, PlaybackCallbacks, PlaybackConfig
from .reference_engine import (
    ReferenceEngine,
    ReferenceTune,
    ReferenceTimingCallbacks,
    ReferenceSynthController,
)

__all__ = [
    "RenderEngine",
    "RenderedTune",
    "TimingCallbacks",
    "SynthController",
    "TempoCell",
    "TempoResynchronizer",
    "FrameLoop",
    "NoteHighlighter",
    "PlaybackController",
    "PlaybackCallbacks",
    "PlaybackConfig",
    "ReferenceEngine",
    "ReferenceTune",
    "ReferenceTimingCallbacks",
    "ReferenceSynthController",
]
