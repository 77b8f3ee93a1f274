"""Meter analysis - subdivision unit and perceptual beat grouping."""

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

from ..core.constants import DEFAULT_METER


@dataclass(frozen=True)
class MeterInfo:
    """Container for meter analysis results."""

    subdivisions_per_measure: int
    subdivision_unit: int  # Meter denominator (4 = quarter, 8 = eighth)
    subdivisions_per_beat: int = 1

    @property
    def is_compound(self) -> bool:
        return self.subdivisions_per_beat > 1

    @property
    def beats_per_measure(self) -> float:
        return self.subdivisions_per_measure / self.subdivisions_per_beat

    @property
    def fraction(self) -> Tuple[int, int]:
        return (self.subdivisions_per_measure, self.subdivision_unit)


class MeterAnalyzer:
    """Derive subdivision and beat structure from a time signature."""

    COMMON_TIME = {"C": (4, 4), "C|": (2, 2)}

    def __init__(self, default_meter: Tuple[int, int] = DEFAULT_METER):
        self.default_meter = default_meter

    def analyze(self, fraction: Any = None) -> MeterInfo:
        """
        Analyze a meter fraction.

        Args:
            fraction: ``(num, den)`` tuple, ``"6/8"`` string, mapping or
                object with ``num``/``den``. ``None`` means 4/4.

        Returns:
            MeterInfo. Compound meters (x/8 with a numerator above 3 that
            divides by 3) group three subdivisions into one beat.
        """
        num, den = self._coerce(fraction)
        return MeterInfo(
            subdivisions_per_measure=num,
            subdivision_unit=den,
            subdivisions_per_beat=self.subdivisions_per_beat(num, den),
        )

    @staticmethod
    def subdivisions_per_beat(numerator: int, denominator: int) -> int:
        if denominator == 8 and numerator > 3 and numerator % 3 == 0:
            return 3
        return 1

    def _coerce(self, fraction: Any) -> Tuple[int, int]:
        num: Optional[Any] = None
        den: Optional[Any] = None

        if isinstance(fraction, str):
            text = fraction.strip()
            if text in self.COMMON_TIME:
                return self.COMMON_TIME[text]
            if "/" in text:
                head, _, tail = text.partition("/")
                num, den = _to_number(head), _to_number(tail)
        elif isinstance(fraction, Mapping):
            num, den = fraction.get("num"), fraction.get("den")
        elif isinstance(fraction, (tuple, list)) and len(fraction) == 2:
            num, den = fraction
        elif fraction is not None:
            num = getattr(fraction, "num", None)
            den = getattr(fraction, "den", None)

        default_num, default_den = self.default_meter
        return (
            _valid_part(num, default_num),
            _valid_part(den, default_den),
        )


def _to_number(text: str) -> Optional[float]:
    # "2+3+2" style additive numerators sum up
    parts = text.strip().split("+")
    try:
        return sum(float(p) for p in parts)
    except ValueError:
        return None


def _valid_part(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if not math.isfinite(value) or value <= 0:
        return default
    return int(value)
