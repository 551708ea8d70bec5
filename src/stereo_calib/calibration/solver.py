"""Per-camera intrinsics solve from accepted checkerboard samples."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Sequence

import cv2
import numpy as np

from stereo_calib.core.models import BoardConfig, CalibrationResult, CameraSide


log = logging.getLogger(__name__)

SOLVER_MAX_ITER = 30
MAX_REPROJECTION_ERROR_PX = 5.0
MIN_MATRIX_DETERMINANT = 1e-6


class NotEnoughSamples(ValueError):
    """Raised when a solve is requested before the sample store is full."""


class NumericalFailure(RuntimeError):
    """Raised when the fit converged to a degenerate or implausible calibration."""


@dataclass(slots=True)
class SolverConfig:
    max_iter: int = SOLVER_MAX_ITER
    max_reprojection_error_px: float = MAX_REPROJECTION_ERROR_PX
    min_matrix_determinant: float = MIN_MATRIX_DETERMINANT


def board_object_points(board: BoardConfig) -> np.ndarray:
    """Planar grid (col * s, row * s, 0), row-major, in millimetres."""
    objp = np.zeros((board.corner_count, 3), np.float32)
    grid = np.mgrid[0:board.pattern_cols, 0:board.pattern_rows].T.reshape(-1, 2)
    objp[:, :2] = grid * float(board.square_length_mm)
    return objp


def _check_result(
    camera_matrix: np.ndarray,
    dist_coeffs: np.ndarray,
    rms: float,
    cfg: SolverConfig,
) -> None:
    if not np.all(np.isfinite(camera_matrix)) or not np.all(np.isfinite(dist_coeffs)) or not np.isfinite(rms):
        raise NumericalFailure("Calibration produced non-finite values")
    fx, fy = float(camera_matrix[0, 0]), float(camera_matrix[1, 1])
    if fx <= 0.0 or fy <= 0.0:
        raise NumericalFailure(f"Calibration produced non-positive focal length (fx={fx:.3f}, fy={fy:.3f})")
    det = float(np.linalg.det(camera_matrix))
    if abs(det) < cfg.min_matrix_determinant:
        raise NumericalFailure(f"Intrinsic matrix is near-singular (det={det:.3e})")
    if rms > cfg.max_reprojection_error_px:
        raise NumericalFailure(
            f"Reprojection error {rms:.3f}px exceeds limit {cfg.max_reprojection_error_px:.3f}px"
        )


def solve_intrinsics(
    side: CameraSide,
    samples: Sequence[np.ndarray],
    board: BoardConfig,
    image_size: tuple[int, int],
    initial_matrix: np.ndarray,
    initial_coeffs: np.ndarray,
    cfg: SolverConfig | None = None,
) -> CalibrationResult:
    """
    Fit intrinsics and 5-term distortion with a fixed fx/fy ratio.

    Inputs are copied; nothing passed in is modified. The fx/fy ratio is taken
    from ``initial_matrix``.
    """
    cfg = cfg or SolverConfig()
    if len(samples) < board.target_sample_count:
        raise NotEnoughSamples(
            f"{side}: need {board.target_sample_count} samples, have {len(samples)}"
        )

    # Object points are the same for every view; only image points differ.
    objp = board_object_points(board)
    object_points = [objp] * len(samples)
    image_points = [np.asarray(s, dtype=np.float32).reshape(-1, 1, 2) for s in samples]

    camera_matrix = np.asarray(initial_matrix, dtype=np.float64).reshape(3, 3).copy()
    dist_coeffs = np.asarray(initial_coeffs, dtype=np.float64).reshape(-1, 1)[:5].copy()
    criteria = (cv2.TERM_CRITERIA_COUNT + cv2.TERM_CRITERIA_EPS, int(cfg.max_iter), sys.float_info.epsilon)

    try:
        rms, camera_matrix, dist_coeffs, rvecs, tvecs = cv2.calibrateCamera(
            object_points,
            image_points,
            (int(image_size[0]), int(image_size[1])),
            camera_matrix,
            dist_coeffs,
            flags=cv2.CALIB_FIX_ASPECT_RATIO,
            criteria=criteria,
        )
    except cv2.error as exc:
        raise NumericalFailure(f"{side}: calibrateCamera failed: {exc}") from exc

    dist_coeffs = np.asarray(dist_coeffs, dtype=np.float64).reshape(-1)[:5]
    _check_result(camera_matrix, dist_coeffs, float(rms), cfg)

    per_view_errors: list[float] = []
    for obj, img, rv, tv in zip(object_points, image_points, rvecs, tvecs):
        proj, _ = cv2.projectPoints(obj, rv, tv, camera_matrix, dist_coeffs)
        diff = proj.reshape(-1, 2) - img.reshape(-1, 2)
        per_view_errors.append(float(np.sqrt(np.mean(np.sum(diff * diff, axis=1)))))

    log.info(
        "%s solve: rms=%.4fpx fx=%.2f fy=%.2f cx=%.2f cy=%.2f views=%d",
        side,
        float(rms),
        camera_matrix[0, 0],
        camera_matrix[1, 1],
        camera_matrix[0, 2],
        camera_matrix[1, 2],
        len(image_points),
    )
    return CalibrationResult(
        side=side,
        intrinsic_matrix=np.asarray(camera_matrix, dtype=np.float64).copy(),
        distortion_coeffs=dist_coeffs.copy(),
        reprojection_error=float(rms),
        image_size=(int(image_size[0]), int(image_size[1])),
        samples_used=len(image_points),
        per_view_errors=tuple(per_view_errors),
    )
