"""Checkerboard corner detection with subpixel refinement."""

from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from stereo_calib.core.models import BoardConfig


SUBPIX_WINDOW = (11, 11)
SUBPIX_ZERO_ZONE = (-1, -1)
SUBPIX_MAX_ITER = 30
SUBPIX_EPS_PX = 0.1


def detect_pattern(gray: np.ndarray, board: BoardConfig) -> Optional[np.ndarray]:
    """
    Find the board's interior corners in a uint8 grayscale image.

    Returns a float32 array of shape (rows * cols, 2) in row-major order, or
    None when the board is absent or only partially found.
    """
    if gray.ndim != 2:
        raise ValueError("detect_pattern expects a single-channel image")

    # CALIB_CB_NORMALIZE_IMAGE is left out; it is too slow for a live preview.
    flags = cv2.CALIB_CB_ADAPTIVE_THRESH | cv2.CALIB_CB_FILTER_QUADS | cv2.CALIB_CB_FAST_CHECK
    found, corners = cv2.findChessboardCorners(gray, board.pattern_size, flags=flags)
    if not found or corners is None:
        return None
    if corners.shape[0] != board.corner_count:
        return None

    criteria = (
        cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER,
        SUBPIX_MAX_ITER,
        SUBPIX_EPS_PX,
    )
    corners = cv2.cornerSubPix(gray, corners, SUBPIX_WINDOW, SUBPIX_ZERO_ZONE, criteria)
    return np.ascontiguousarray(corners.reshape(-1, 2), dtype=np.float32)


def outline_corners(pattern: np.ndarray, board: BoardConfig) -> np.ndarray:
    """Four outer corners: first, end of first row, last, start of last row."""
    n = board.corner_count
    cols = board.pattern_cols
    idx = [0, cols - 1, n - 1, n - cols]
    return np.asarray(pattern, dtype=np.float32)[idx].copy()
