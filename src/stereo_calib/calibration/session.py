"""Per-camera capture session: scratch buffers, gate state and accepted samples."""

from __future__ import annotations

import logging
from typing import Callable, Literal, Optional

import cv2
import numpy as np

from stereo_calib.calibration.checkerboard import detect_pattern, outline_corners
from stereo_calib.calibration.gate import GateThresholds, GateVerdict, evaluate
from stereo_calib.calibration.undistort import DistortionMap, build_distortion_map, undistort_image
from stereo_calib.core.models import BoardConfig, CalibrationResult, CameraIntrinsics, CameraSide


log = logging.getLogger(__name__)

PreviewMode = Literal["bgr", "grayscale", "undistorted"]
PREVIEW_MODES: tuple[PreviewMode, ...] = ("bgr", "grayscale", "undistorted")

Detector = Callable[[np.ndarray, BoardConfig], Optional[np.ndarray]]


def validate_frame(frame: np.ndarray) -> None:
    if not isinstance(frame, np.ndarray) or frame.ndim != 3 or frame.shape[2] != 3 or frame.dtype != np.uint8:
        shape = getattr(frame, "shape", None)
        dtype = getattr(frame, "dtype", None)
        raise ValueError(f"Expected uint8 HxWx3 frame, got {dtype} {shape}")
    if frame.shape[0] == 0 or frame.shape[1] == 0:
        raise ValueError("Empty frame")


class FrameBuffers:
    """
    Fixed-size scratch images for one camera, allocated once per resolution.
    Every ingest overwrites them completely.
    """

    def __init__(self, width: int, height: int) -> None:
        self.width = int(width)
        self.height = int(height)
        self.bgr = np.zeros((self.height, self.width, 3), dtype=np.uint8)
        self.gray = np.zeros((self.height, self.width), dtype=np.uint8)
        self.gray_bgr = np.zeros((self.height, self.width, 3), dtype=np.uint8)
        self.undistorted = np.zeros((self.height, self.width, 3), dtype=np.uint8)

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    def matches(self, frame: np.ndarray) -> bool:
        return frame.shape[:2] == (self.height, self.width)

    def ingest(self, frame: np.ndarray, dmap: DistortionMap) -> None:
        validate_frame(frame)
        if not self.matches(frame):
            raise ValueError(f"Frame {frame.shape[1]}x{frame.shape[0]} does not match buffers {self.width}x{self.height}")
        np.copyto(self.bgr, frame)
        cv2.cvtColor(self.bgr, cv2.COLOR_BGR2GRAY, dst=self.gray)
        cv2.cvtColor(self.gray, cv2.COLOR_GRAY2BGR, dst=self.gray_bgr)
        undistort_image(self.bgr, dmap, out=self.undistorted)

    def view(self, mode: PreviewMode) -> np.ndarray:
        if mode == "grayscale":
            return self.gray_bgr
        if mode == "undistorted":
            return self.undistorted
        return self.bgr


class SessionState:
    """
    Capture and calibration state for one camera of the rig.

    ``baseline`` is the calibration in effect before capture started; resets
    restore it. Matrix and coefficients otherwise change only through
    ``apply_result``.
    """

    def __init__(
        self,
        side: CameraSide,
        baseline: CameraIntrinsics,
        board: BoardConfig,
        thresholds: GateThresholds | None = None,
        detector: Detector = detect_pattern,
    ) -> None:
        self.side: CameraSide = side
        self.board = board
        self.thresholds = thresholds or GateThresholds()
        self.detector = detector
        self.baseline = baseline

        self.buffers: Optional[FrameBuffers] = FrameBuffers(baseline.width, baseline.height)
        self.last_accepted_pattern: Optional[np.ndarray] = None
        self.current_pattern: Optional[np.ndarray] = None
        self.current_valid = False
        self.pattern_found = False
        self.last_verdict: Optional[GateVerdict] = None
        self.overlay_corners: list[np.ndarray] = []
        self.samples: list[np.ndarray] = []

        self.intrinsic_matrix = baseline.camera_matrix.copy()
        self.distortion_coeffs = baseline.dist_coeffs.copy()
        self.reprojection_error = 0.0
        self.distortion_map = build_distortion_map(self.intrinsic_matrix, self.distortion_coeffs, self.image_size)

    @property
    def image_size(self) -> tuple[int, int]:
        if self.buffers is not None:
            return self.buffers.size
        return self.baseline.image_size

    @property
    def accepted_count(self) -> int:
        return len(self.samples)

    @property
    def is_full(self) -> bool:
        return len(self.samples) >= self.board.target_sample_count

    def ingest(self, frame: np.ndarray) -> None:
        if self.buffers is None:
            raise RuntimeError(f"{self.side} session has been released")
        validate_frame(frame)
        if not self.buffers.matches(frame):
            height, width = frame.shape[:2]
            log.info("%s resolution changed to %dx%d; reallocating buffers", self.side, width, height)
            self.buffers = FrameBuffers(width, height)
            self.rebuild_distortion_map()
        self.buffers.ingest(frame, self.distortion_map)

    def detect_and_gate(self) -> bool:
        """Detect the board in the current grayscale buffer and run the gate on it."""
        if self.buffers is None:
            return False
        pattern = self.detector(self.buffers.gray, self.board)
        if pattern is None or pattern.shape[0] != self.board.corner_count:
            self.pattern_found = False
            self.current_valid = False
            return False
        self.pattern_found = True
        self.apply_pattern(pattern)
        return self.current_valid

    def apply_pattern(self, pattern: np.ndarray) -> GateVerdict:
        verdict = evaluate(
            pattern,
            self.current_pattern,
            self.last_accepted_pattern,
            self.board.pattern_rows,
            self.board.pattern_cols,
            self.thresholds,
        )
        # Keep the newest detection even on rejection so the next stability check compares consecutive frames.
        self.current_pattern = np.array(pattern, dtype=np.float32, copy=True)
        self.current_valid = verdict.ok
        self.last_verdict = verdict
        return verdict

    def try_commit(self) -> bool:
        if not self.current_valid or self.current_pattern is None or self.is_full:
            return False
        pattern = self.current_pattern
        self.samples.append(pattern)
        self.overlay_corners.extend(outline_corners(pattern, self.board))
        self.last_accepted_pattern = pattern
        # Stale once committed: the next tick gates against the new sample.
        self.current_valid = False
        log.info("%s accepted sample %d/%d", self.side, len(self.samples), self.board.target_sample_count)
        return True

    def rebuild_distortion_map(self) -> None:
        self.distortion_map = build_distortion_map(self.intrinsic_matrix, self.distortion_coeffs, self.image_size)

    def apply_result(self, result: CalibrationResult) -> None:
        self.intrinsic_matrix = np.asarray(result.intrinsic_matrix, dtype=np.float64).copy()
        self.distortion_coeffs = np.asarray(result.distortion_coeffs, dtype=np.float64).reshape(-1).copy()
        self.reprojection_error = float(result.reprojection_error)
        self.rebuild_distortion_map()

    def reset_capture(self) -> None:
        self.last_accepted_pattern = None
        self.current_pattern = None
        self.current_valid = False
        self.pattern_found = False
        self.last_verdict = None
        self.overlay_corners = []
        self.samples = []

    def reset_calibration(self) -> None:
        self.intrinsic_matrix = self.baseline.camera_matrix.copy()
        self.distortion_coeffs = self.baseline.dist_coeffs.copy()
        self.reprojection_error = 0.0
        self.rebuild_distortion_map()

    def reset(self) -> None:
        self.reset_capture()
        self.reset_calibration()

    def preview(self, mode: PreviewMode) -> Optional[np.ndarray]:
        if self.buffers is None:
            return None
        return self.buffers.view(mode)

    def release(self) -> None:
        self.buffers = None

    def status(self) -> dict:
        verdict = self.last_verdict
        return {
            "side": self.side,
            "accepted": self.accepted_count,
            "target": int(self.board.target_sample_count),
            "pattern_found": bool(self.pattern_found),
            "current_valid": bool(self.current_valid),
            "gate_reason": verdict.reason if verdict is not None else None,
            "reprojection_error": float(self.reprojection_error),
            "image_size": list(self.image_size),
        }
