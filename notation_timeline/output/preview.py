"""Timeline preview image - a small overview strip of the whole tune."""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..core import Timeline, midi_to_frequency, stem_position

BACKGROUND_TOP = np.array([15, 23, 42], dtype=float)
BACKGROUND_BOTTOM = np.array([2, 6, 23], dtype=float)
LINE_COLOR = np.array([255, 255, 255], dtype=float)
NOTE_COLOR = np.array([255, 225, 185], dtype=float)


@dataclass
class PreviewConfig:
    """Configuration for preview rendering.

    Attributes:
        width: Image width in pixels (min 32, default: 960)
        height: Image height in pixels (min 16, default: 120)
        min_frequency: Frequency at the top of the stem (default: from notes)
        max_frequency: Frequency at the bottom of the stem (default: from notes)
    """

    width: int = 960
    height: int = 120
    min_frequency: Optional[float] = None
    max_frequency: Optional[float] = None


FALLBACK_MIN_FREQUENCY = midi_to_frequency(36)
FALLBACK_MAX_FREQUENCY = midi_to_frequency(84)


def _blend(image: np.ndarray, rows: slice, cols: slice, color: np.ndarray, alpha: float):
    region = image[rows, cols]
    image[rows, cols] = region * (1 - alpha) + color * alpha


def render_preview(
    timeline: Optional[Timeline],
    width: Optional[int] = None,
    height: Optional[int] = None,
    config: Optional[PreviewConfig] = None,
) -> Optional[np.ndarray]:
    """
    Render a timeline overview.

    Measure lines are solid, beat lines dashed, and each note is a
    horizontal stroke placed vertically by ``stem_position`` of its
    frequency. Brighter strokes mean higher velocity.

    Args:
        timeline: Timeline to draw
        width: Overrides ``config.width``
        height: Overrides ``config.height``
        config: Preview configuration

    Returns:
        ``(height, width, 3)`` uint8 RGB array, or None when the timeline
        is missing, empty or has no length
    """
    config = config or PreviewConfig()
    if timeline is None or not timeline.notes or timeline.total_subdivisions <= 0:
        return None

    width = max(32, int(width if width is not None else config.width))
    height = max(16, int(height if height is not None else config.height))
    total = timeline.total_subdivisions

    ramp = np.linspace(0.0, 1.0, height)[:, None]
    column = BACKGROUND_TOP * (1 - ramp) + BACKGROUND_BOTTOM * ramp
    image = np.repeat(column[:, None, :], width, axis=1)

    pitches = np.array([note.pitch for note in timeline.notes], dtype=float)
    if config.min_frequency is not None and np.isfinite(config.min_frequency):
        min_frequency = max(1e-3, config.min_frequency)
    else:
        min_frequency = max(FALLBACK_MIN_FREQUENCY, midi_to_frequency(pitches.min()))
    if config.max_frequency is not None and np.isfinite(config.max_frequency):
        max_candidate = max(1e-3, config.max_frequency)
    else:
        max_candidate = max(FALLBACK_MAX_FREQUENCY, midi_to_frequency(pitches.max()))
    max_frequency = max(min_frequency + 1e-3, max_candidate)

    padding = height * 0.15
    usable = max(1.0, height - padding * 2)
    line_top = int(padding * 0.3)
    line_bottom = int(height - padding * 0.3)

    for boundary in timeline.measure_boundaries:
        if boundary <= 0:
            continue
        x = min(width - 1, int(np.clip(boundary / total, 0, 1) * width))
        _blend(image, slice(line_top, line_bottom), slice(x, x + 1), LINE_COLOR, 0.28)

    dash = np.arange(line_top, line_bottom)
    dash = dash[(dash - line_top) % 8 < 4]
    for beat in timeline.beat_boundaries:
        x = min(width - 1, int(np.clip(beat / total, 0, 1) * width))
        image[dash, x] = image[dash, x] * 0.88 + LINE_COLOR * 0.12

    for note in timeline.notes:
        start_ratio = float(np.clip(note.start_subdivision / total, 0, 1))
        end_ratio = float(np.clip(note.end_subdivision / total, start_ratio + 0.001, 1))
        velocity = float(np.clip(note.velocity / 127, 0.2, 1))

        position = stem_position(min_frequency, max_frequency, midi_to_frequency(note.pitch))
        center = padding + position * usable
        stroke_width = max(1.2, (end_ratio - start_ratio) * width)
        thickness = float(np.clip(min(height * 0.5, max(2.0, stroke_width * 0.12)), 1.5, height * 0.55))

        x0 = int(start_ratio * width)
        x1 = max(x0 + 1, int(round(end_ratio * width)))
        y0 = max(0, int(round(center - thickness / 2)))
        y1 = min(height, max(y0 + 1, int(round(center + thickness / 2))))
        _blend(image, slice(y0, y1), slice(x0, min(x1, width)), NOTE_COLOR, 0.55 + 0.35 * velocity)

    return np.clip(np.round(image), 0, 255).astype(np.uint8)
