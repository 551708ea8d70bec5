"""Preview overlays: live pattern, last accepted board and accepted-board outlines."""

from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from stereo_calib.calibration.session import SessionState


OUTLINE_COLOR = (0, 255, 255)  # BGR yellow
ACCEPTED_COLOR = (255, 160, 0)
INVALID_COLOR = (0, 0, 255)


def draw_outlines(image: np.ndarray, overlay_corners: list[np.ndarray]) -> None:
    """Draw one closed quad per four outline corners, in place."""
    pts = np.asarray(overlay_corners, dtype=np.float32).reshape(-1, 2)
    for i in range(0, pts.shape[0] - 3, 4):
        quad = np.rint(pts[i:i + 4]).astype(np.int32).reshape(-1, 1, 2)
        cv2.polylines(image, [quad], True, OUTLINE_COLOR, 1, cv2.LINE_AA)


def draw_pattern(image: np.ndarray, pattern: np.ndarray, pattern_size: tuple[int, int], valid: bool) -> None:
    corners = np.asarray(pattern, dtype=np.float32).reshape(-1, 1, 2)
    if valid:
        cv2.drawChessboardCorners(image, pattern_size, corners, True)
        return
    for x, y in corners.reshape(-1, 2):
        cv2.circle(image, (int(round(x)), int(round(y))), 3, INVALID_COLOR, 1, cv2.LINE_AA)


def render_session_overlay(base: np.ndarray, session: SessionState, capturing: bool) -> np.ndarray:
    out = np.ascontiguousarray(base, dtype=np.uint8).copy()
    if not capturing:
        return out
    size = session.board.pattern_size
    if session.last_accepted_pattern is not None:
        for x, y in session.last_accepted_pattern.reshape(-1, 2):
            cv2.circle(out, (int(round(x)), int(round(y))), 2, ACCEPTED_COLOR, -1, cv2.LINE_AA)
    if session.current_pattern is not None and session.pattern_found:
        draw_pattern(out, session.current_pattern, size, session.current_valid)
    if session.overlay_corners:
        draw_outlines(out, session.overlay_corners)
    return out


def draw_status_text(image: np.ndarray, text: str, color: Optional[tuple[int, int, int]] = None) -> None:
    cv2.putText(
        image,
        text,
        (16, 32),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.8,
        color or (255, 255, 255),
        2,
        cv2.LINE_AA,
    )
