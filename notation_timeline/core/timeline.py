"""Timeline container - notes in subdivisions plus the live tempo factor."""

import math
from dataclasses import dataclass, field
from typing import List

from .note import Note
from .constants import (
    BOUNDARY_EPSILON,
    DEFAULT_METER,
    DEFAULT_SECONDS_PER_SUBDIVISION,
)


@dataclass
class Timeline:
    """Tempo-invariant musical timeline.

    Everything except ``seconds_per_subdivision`` is fixed once built.
    The tempo factor is the only field a warp change may rewrite.
    """

    notes: List[Note] = field(default_factory=list)
    total_subdivisions: float = 0.0
    subdivisions_per_measure: int = DEFAULT_METER[0]
    subdivision_unit: int = DEFAULT_METER[1]
    subdivisions_per_beat: int = 1
    measure_boundaries: List[float] = field(default_factory=list)
    seconds_per_subdivision: float = DEFAULT_SECONDS_PER_SUBDIVISION

    @property
    def seconds_per_beat(self) -> float:
        """Legacy alias of ``seconds_per_subdivision``."""
        return self.seconds_per_subdivision

    @seconds_per_beat.setter
    def seconds_per_beat(self, value: float) -> None:
        self.seconds_per_subdivision = value

    @property
    def is_empty(self) -> bool:
        return not self.notes

    @property
    def total_seconds(self) -> float:
        """Length of the timeline at the current tempo."""
        return self.subdivisions_to_seconds(self.total_subdivisions)

    @property
    def subdivision_boundaries(self) -> List[int]:
        """Whole subdivisions strictly inside the timeline (0 excluded)."""
        return _grid(1, self.total_subdivisions)

    @property
    def beat_boundaries(self) -> List[int]:
        """Beat positions (in subdivisions) strictly inside the timeline."""
        return _grid(max(1, self.subdivisions_per_beat), self.total_subdivisions)

    def seconds_to_subdivisions(self, seconds: float) -> float:
        return seconds / self.seconds_per_subdivision

    def subdivisions_to_seconds(self, subdivisions: float) -> float:
        return subdivisions * self.seconds_per_subdivision


def _grid(step: int, total: float) -> List[int]:
    if total <= 0:
        return []
    last = math.ceil(total - BOUNDARY_EPSILON)
    return [value for value in range(step, last, step)]


def empty_timeline(
    seconds_per_subdivision: float = DEFAULT_SECONDS_PER_SUBDIVISION,
) -> Timeline:
    """Timeline with no notes on the default 4/4 meter."""
    return Timeline(seconds_per_subdivision=seconds_per_subdivision)
