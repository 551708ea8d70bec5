"""Sample gate: decides whether a detected pattern is a usable calibration view."""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Literal, Optional

import numpy as np


BOARD_MOVED_PIXEL_DIST = 5.0
BOARD_NEW_LOCATION_PIXEL_DIST = 100.0
STRAIGHT_LINE_TOLERANCE_PX = 5.0

GateReason = Literal["ok", "moving", "not_relocated", "not_straight"]


@dataclass(slots=True)
class GateThresholds:
    """Per-corner pixel tolerances; sums are compared against value * corner count."""
    moved_px: float = BOARD_MOVED_PIXEL_DIST
    new_location_px: float = BOARD_NEW_LOCATION_PIXEL_DIST
    straight_line_px: float = STRAIGHT_LINE_TOLERANCE_PX


@dataclass(slots=True)
class GateVerdict:
    ok: bool
    reason: GateReason
    motion_sum: Optional[float] = None
    relocation_sum: Optional[float] = None
    max_line_deviation: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def displacement_sum(a: np.ndarray, b: np.ndarray) -> float:
    """Sum over corners of the Euclidean distance between two patterns."""
    d = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    return float(np.sum(np.hypot(d[:, 0], d[:, 1])))


def distance_to_line(line_start: np.ndarray, line_end: np.ndarray, point: np.ndarray) -> float:
    start_to_end = np.asarray(line_end, dtype=np.float64) - np.asarray(line_start, dtype=np.float64)
    start_to_point = np.asarray(point, dtype=np.float64) - np.asarray(line_start, dtype=np.float64)
    area = start_to_point[0] * start_to_end[1] - start_to_point[1] * start_to_end[0]
    length = float(np.hypot(start_to_end[0], start_to_end[1]))
    if length == 0.0:
        return 0.0
    return abs(float(area)) / length


def max_row_deviation(pattern: np.ndarray, rows: int, cols: int) -> float:
    """Largest perpendicular distance of an interior corner from its row's end-to-end chord."""
    pts = np.asarray(pattern, dtype=np.float64).reshape(rows, cols, 2)
    worst = 0.0
    for row in pts:
        start, end = row[0], row[-1]
        for point in row[1:-1]:
            worst = max(worst, distance_to_line(start, end, point))
    return worst


def evaluate(
    pattern: np.ndarray,
    current: Optional[np.ndarray],
    last_accepted: Optional[np.ndarray],
    rows: int,
    cols: int,
    th: GateThresholds,
) -> GateVerdict:
    """
    Run the three ordered checks, stopping at the first failure:

    1. stability against the previous detection (board held still),
    2. relocation against the last accepted sample (new pose),
    3. row straightness (no misordered or warped corners).
    """
    n = rows * cols
    motion = None
    if current is not None:
        motion = displacement_sum(pattern, current)
        if motion > th.moved_px * n:
            return GateVerdict(ok=False, reason="moving", motion_sum=motion)

    relocation = None
    if last_accepted is not None:
        relocation = displacement_sum(pattern, last_accepted)
        if relocation < th.new_location_px * n:
            return GateVerdict(ok=False, reason="not_relocated", motion_sum=motion, relocation_sum=relocation)

    deviation = max_row_deviation(pattern, rows, cols)
    if deviation > th.straight_line_px:
        return GateVerdict(
            ok=False,
            reason="not_straight",
            motion_sum=motion,
            relocation_sum=relocation,
            max_line_deviation=deviation,
        )
    return GateVerdict(ok=True, reason="ok", motion_sum=motion, relocation_sum=relocation, max_line_deviation=deviation)
