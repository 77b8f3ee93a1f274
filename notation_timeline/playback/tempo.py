"""Tempo resynchronization on warp changes.

The engine's displayed tempo is rounded to whole QPM, so repeated warp
changes computed from it drift. The seconds-per-subdivision factor is
instead recomputed from the tune's warp-invariant measure duration.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from ..core.constants import DEFAULT_SECONDS_PER_SUBDIVISION, UNITY_WARP
from ..core.timeline import Timeline

logger = logging.getLogger(__name__)


@dataclass
class TempoCell:
    """Live tempo shared by the controller and the frame loop.

    Only ``TempoResynchronizer`` writes to it.
    """

    seconds_per_subdivision: float = DEFAULT_SECONDS_PER_SUBDIVISION
    warp: float = UNITY_WARP


def _finite_positive(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value > 0
    )


class TempoResynchronizer:
    """Recompute the tempo factor for a new warp without touching notes."""

    def __init__(
        self,
        cell: TempoCell,
        subdivisions_per_measure: int,
        subdivision_unit: int = 4,
        timeline: Optional[Timeline] = None,
    ):
        """
        Initialize TempoResynchronizer.

        Args:
            cell: Tempo cell to write
            subdivisions_per_measure: Meter numerator
            subdivision_unit: Meter denominator, used by ``precise_qpm``
            timeline: Timeline whose tempo field mirrors the cell
        """
        self.cell = cell
        self.subdivisions_per_measure = subdivisions_per_measure
        self.subdivision_unit = subdivision_unit
        self.timeline = timeline

    def compute(self, ms_per_measure: Any, warp: Any) -> Optional[float]:
        """Seconds per subdivision for a measure duration and warp, or None."""
        if not _finite_positive(ms_per_measure) or not _finite_positive(warp):
            return None
        if not _finite_positive(self.subdivisions_per_measure):
            return None
        return (ms_per_measure * UNITY_WARP / warp) / 1000 / self.subdivisions_per_measure

    def seed(self, seconds_per_subdivision: float) -> None:
        """Set the build tempo at unity warp."""
        self.cell.seconds_per_subdivision = seconds_per_subdivision
        self.cell.warp = UNITY_WARP
        if self.timeline is not None:
            self.timeline.seconds_per_subdivision = seconds_per_subdivision

    def resync(self, tune: Any, warp: float) -> float:
        """
        Update the cell for a new warp.

        Args:
            tune: Rendered tune; ``milliseconds_per_measure()`` is read fresh
            warp: Playback speed percentage (100 = notated tempo)

        Returns:
            The active seconds per subdivision. Unchanged if it could not
            be computed.
        """
        method = getattr(tune, "milliseconds_per_measure", None)
        ms_per_measure = method() if callable(method) else None

        value = self.compute(ms_per_measure, warp)
        if value is None:
            logger.warning(
                "Cannot compute tempo for warp %s (ms/measure=%s); keeping %.4f s/subdivision",
                warp,
                ms_per_measure,
                self.cell.seconds_per_subdivision,
            )
            return self.cell.seconds_per_subdivision

        self.cell.seconds_per_subdivision = value
        self.cell.warp = float(warp)
        if self.timeline is not None:
            self.timeline.seconds_per_subdivision = value
        logger.debug("Warp %.1f%% -> %.6f s/subdivision", warp, value)
        return value

    def precise_qpm(self) -> float:
        """Quarter notes per minute at the current cell tempo, unrounded."""
        seconds_per_quarter = self.cell.seconds_per_subdivision * self.subdivision_unit / 4
        return 60.0 / seconds_per_quarter
