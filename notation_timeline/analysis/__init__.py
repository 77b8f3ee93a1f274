"""Analysis layer - Musical structure derived from notation metadata.

This layer interprets the written meter:
- Subdivision unit and subdivisions per measure
- Perceptual beat grouping (compound meter detection)
"""

from .meter import MeterAnalyzer, MeterInfo

__all__ = [
    "MeterAnalyzer",
    "MeterInfo",
]
