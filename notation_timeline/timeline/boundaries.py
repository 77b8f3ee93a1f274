"""Measure boundary accumulation."""

import math
from typing import List, Optional

from ..core.constants import BOUNDARY_EPSILON, FALLBACK_BOUNDARY_SLACK


class MeasureBoundaryAccumulator:
    """
    Collects measure boundaries (in subdivisions) in arrival order.

    Values are rounded to 6 decimals; a value within ``BOUNDARY_EPSILON``
    of the last accepted one is dropped, so the list stays strictly
    increasing for monotonic input.
    """

    def __init__(self, epsilon: float = BOUNDARY_EPSILON):
        self.epsilon = epsilon
        self._values: List[float] = []

    def add(self, position: Optional[float]) -> bool:
        """Add a boundary. Returns True if it was accepted."""
        if position is None or not math.isfinite(position) or position < 0:
            return False
        value = round(position, 6)
        if self._values and abs(self._values[-1] - value) < self.epsilon:
            return False
        self._values.append(value)
        return True

    def add_periodic(self, period: float, total: float) -> None:
        """Add ``period, 2*period, ...`` up to ``total`` inclusive."""
        if period <= 0:
            return
        count = int(math.floor((total + FALLBACK_BOUNDARY_SLACK) / period))
        for index in range(1, count + 1):
            self.add(index * period)

    @property
    def values(self) -> List[float]:
        return list(self._values)

    def __len__(self) -> int:
        return len(self._values)
