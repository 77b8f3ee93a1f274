"""Dual-source reconciliation.

The baseline and event-stream builders share only their output shape. To
compare or swap one for the other, a timeline is first moved onto the
baseline's tempo basis.
"""

import copy
import math
from dataclasses import dataclass, replace
from typing import Optional

import numpy as np

from ..core.constants import BOUNDARY_EPSILON, DEFAULT_SECONDS_PER_SUBDIVISION
from ..core.timeline import Timeline


@dataclass
class RollNotesResult:
    """Timeline for the roll view plus both tempo readings."""

    timeline: Timeline
    baseline_seconds_per_subdivision: float
    playback_seconds_per_subdivision: float


def _is_positive(value) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and value > 0


def normalize_timeline_to_baseline(
    timeline: Timeline, baseline_seconds_per_subdivision: float
) -> Timeline:
    """Copy of ``timeline`` re-expressed on the baseline tempo."""
    return replace(
        timeline,
        notes=[copy.deepcopy(note) for note in timeline.notes],
        measure_boundaries=list(timeline.measure_boundaries),
        seconds_per_subdivision=baseline_seconds_per_subdivision,
    )


def create_roll_notes_result(
    baseline: Timeline, override: Optional[Timeline] = None
) -> RollNotesResult:
    """
    Pick the timeline to display and normalize it to the baseline tempo.

    Args:
        baseline: Timeline from the notation structure
        override: Engine-derived timeline, used instead when present

    Returns:
        RollNotesResult whose ``playback_seconds_per_subdivision`` is the
        source timeline's own tempo (falling back to the baseline's)
    """
    if _is_positive(baseline.seconds_per_subdivision):
        baseline_sps = baseline.seconds_per_subdivision
    else:
        baseline_sps = DEFAULT_SECONDS_PER_SUBDIVISION

    source = override if override is not None else baseline
    if _is_positive(source.seconds_per_subdivision):
        playback_sps = source.seconds_per_subdivision
    else:
        playback_sps = baseline_sps

    return RollNotesResult(
        timeline=normalize_timeline_to_baseline(source, baseline_sps),
        baseline_seconds_per_subdivision=baseline_sps,
        playback_seconds_per_subdivision=playback_sps,
    )


def _note_matrix(timeline: Timeline) -> np.ndarray:
    if not timeline.notes:
        return np.zeros((0, 3))
    rows = np.array(
        [
            (note.start_subdivision, note.duration_subdivisions, note.pitch)
            for note in timeline.notes
        ],
        dtype=float,
    )
    order = np.lexsort((rows[:, 2], rows[:, 1], rows[:, 0]))
    return rows[order]


def timelines_match(
    a: Timeline, b: Timeline, tolerance: float = BOUNDARY_EPSILON
) -> bool:
    """
    Whether two timelines hold the same notes, ignoring order and tempo.

    Notes are compared as sorted (start, duration, pitch) rows.
    """
    left = _note_matrix(a)
    right = _note_matrix(b)
    if left.shape != right.shape:
        return False
    if not np.allclose(left, right, atol=tolerance, rtol=0.0):
        return False
    return abs(a.total_subdivisions - b.total_subdivisions) <= tolerance
