"""Frame loop - interpolates the playback position between timing events.

Timing events arrive per note. Between them the display position is
extrapolated from the last anchor using the live tempo cell, so a warp
change is reflected on the very next frame.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from .tempo import TempoCell

logger = logging.getLogger(__name__)

FrameCallback = Callable[[float], None]


class FrameLoop:
    """Per-frame position source for a visualization."""

    def __init__(
        self,
        tempo_cell: TempoCell,
        total_subdivisions: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize FrameLoop.

        Args:
            tempo_cell: Live tempo, read every frame and never written
            total_subdivisions: Upper clamp for the position
            clock: Seconds source (monotonic)
        """
        self.tempo_cell = tempo_cell
        self.total_subdivisions = total_subdivisions
        self.clock = clock
        self.playing = False
        self.frame_count = 0
        self._anchor_subdivision = 0.0
        self._anchor_time = clock()
        self._stop = asyncio.Event()

    def reseed(self, subdivision: float, now: Optional[float] = None) -> None:
        """Anchor the clock at a musical position."""
        self._anchor_subdivision = max(0.0, subdivision)
        self._anchor_time = self.clock() if now is None else now

    def set_playing(self, playing: bool, now: Optional[float] = None) -> None:
        """Start or freeze extrapolation at the current position."""
        now = self.clock() if now is None else now
        self.reseed(self.display_subdivision(now), now)
        self.playing = playing

    def display_subdivision(self, now: Optional[float] = None) -> float:
        """Position to draw at ``now``."""
        position = self._anchor_subdivision
        if self.playing:
            now = self.clock() if now is None else now
            sps = self.tempo_cell.seconds_per_subdivision
            if sps > 0:
                position += max(0.0, now - self._anchor_time) / sps
        if self.total_subdivisions is not None:
            position = min(position, self.total_subdivisions)
        return position

    async def run(self, on_frame: FrameCallback, fps: float = 60.0) -> None:
        """
        Call ``on_frame(position)`` every frame until ``cancel()``.

        A loop cancelled before it starts returns without drawing a frame.
        Call ``rearm()`` to run it again after a cancel.

        Args:
            on_frame: Receives the display position in subdivisions
            fps: Frames per second
        """
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps}")
        if self._stop.is_set():
            logger.debug("Frame loop cancelled before start")
            return
        interval = 1.0 / fps
        logger.debug("Frame loop started at %.1f fps", fps)

        while not self._stop.is_set():
            on_frame(self.display_subdivision())
            self.frame_count += 1
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

        logger.debug("Frame loop stopped after %d frames", self.frame_count)

    def cancel(self) -> None:
        self._stop.set()

    def rearm(self) -> None:
        """Clear a previous cancel so ``run`` can start again."""
        self._stop.clear()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()
