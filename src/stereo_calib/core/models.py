"""
Core data models for board settings, camera intrinsics and calibration results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional

import numpy as np


CameraSide = Literal["left", "right"]
SIDES: tuple[CameraSide, CameraSide] = ("left", "right")

PATTERN_COLS = 9  # interior corners per row
PATTERN_ROWS = 6
DEFAULT_SQUARE_LENGTH_MM = 24.0
MIN_SQUARE_LENGTH_MM = 1.0
MAX_SQUARE_LENGTH_MM = 100.0
TARGET_SAMPLE_COUNT = 12

DISTORTION_NAMES = ("k1", "k2", "p1", "p2", "k3")


def clamp_square_length(value: float) -> float:
    return float(min(max(float(value), MIN_SQUARE_LENGTH_MM), MAX_SQUARE_LENGTH_MM))


@dataclass(slots=True)
class BoardConfig:
    """
    Checkerboard geometry and capture target shared by both camera sessions.
    """
    square_length_mm: float = DEFAULT_SQUARE_LENGTH_MM
    target_sample_count: int = TARGET_SAMPLE_COUNT
    pattern_rows: int = PATTERN_ROWS
    pattern_cols: int = PATTERN_COLS

    def __post_init__(self) -> None:
        self.square_length_mm = clamp_square_length(self.square_length_mm)
        if self.target_sample_count < 1:
            raise ValueError("target_sample_count must be >= 1")
        if self.pattern_rows < 2 or self.pattern_cols < 3:
            raise ValueError("pattern must have at least 2 rows and 3 columns of corners")

    @property
    def corner_count(self) -> int:
        return int(self.pattern_rows * self.pattern_cols)

    @property
    def pattern_size(self) -> tuple[int, int]:
        """OpenCV pattern size: (corners per row, rows)."""
        return (int(self.pattern_cols), int(self.pattern_rows))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "square_length_mm": float(self.square_length_mm),
            "target_sample_count": int(self.target_sample_count),
            "pattern_rows": int(self.pattern_rows),
            "pattern_cols": int(self.pattern_cols),
        }


def _as_matrix(value: Any) -> np.ndarray:
    m = np.asarray(value, dtype=np.float64).reshape(3, 3)
    return m.copy()


def _as_coeffs(value: Any) -> np.ndarray:
    d = np.asarray(value, dtype=np.float64).reshape(-1)
    if d.size < 5:
        d = np.concatenate([d, np.zeros(5 - d.size)])
    return d[:5].copy()


@dataclass(slots=True)
class CameraIntrinsics:
    """
    A camera's active calibration: the pre-capture baseline of a session and
    what the result sink persists.
    """
    camera_matrix: np.ndarray
    dist_coeffs: np.ndarray
    width: int
    height: int

    def __post_init__(self) -> None:
        self.camera_matrix = _as_matrix(self.camera_matrix)
        self.dist_coeffs = _as_coeffs(self.dist_coeffs)
        self.width = int(self.width)
        self.height = int(self.height)

    @property
    def image_size(self) -> tuple[int, int]:
        return (self.width, self.height)

    @classmethod
    def default(cls, width: int, height: int, hfov_deg: float = 60.0) -> "CameraIntrinsics":
        """Pinhole guess centred on the image with zero distortion."""
        f = 0.5 * float(width) / float(np.tan(np.deg2rad(hfov_deg) / 2.0))
        matrix = np.array(
            [[f, 0.0, width / 2.0], [0.0, f, height / 2.0], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )
        return cls(camera_matrix=matrix, dist_coeffs=np.zeros(5), width=width, height=height)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "camera_matrix": self.camera_matrix.astype(float).tolist(),
            "dist_coeffs": self.dist_coeffs.astype(float).tolist(),
            "image_size": [self.width, self.height],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CameraIntrinsics":
        width, height = data["image_size"]
        return cls(
            camera_matrix=data["camera_matrix"],
            dist_coeffs=data["dist_coeffs"],
            width=int(width),
            height=int(height),
        )


@dataclass(frozen=True, slots=True)
class CalibrationResult:
    """
    Solver output for one camera. Immutable once produced.
    """
    side: CameraSide
    intrinsic_matrix: np.ndarray
    distortion_coeffs: np.ndarray
    reprojection_error: float
    image_size: tuple[int, int]
    samples_used: int
    per_view_errors: tuple[float, ...] = field(default_factory=tuple)

    def intrinsics(self) -> CameraIntrinsics:
        return CameraIntrinsics(
            camera_matrix=self.intrinsic_matrix,
            dist_coeffs=self.distortion_coeffs,
            width=self.image_size[0],
            height=self.image_size[1],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "side": self.side,
            "camera_matrix": np.asarray(self.intrinsic_matrix, dtype=float).tolist(),
            "dist_coeffs": np.asarray(self.distortion_coeffs, dtype=float).reshape(-1).tolist(),
            "rms": float(self.reprojection_error),
            "image_size": [int(self.image_size[0]), int(self.image_size[1])],
            "views_used": int(self.samples_used),
            "per_view_errors": [float(e) for e in self.per_view_errors],
        }


@dataclass(slots=True)
class StereoIntrinsics:
    """Active calibration of both cameras as loaded from a result sink."""
    left: CameraIntrinsics
    right: CameraIntrinsics
    source: Optional[str] = None

    def get(self, side: CameraSide) -> CameraIntrinsics:
        return self.left if side == "left" else self.right


@dataclass(slots=True)
class CaptureParams:
    """
    Parameters for opening the stereo video source.
    """
    resolution: tuple[int, int] = (640, 480)
    fps: float = 30.0
    exposure_us: Optional[int] = None
    analogue_gain: Optional[float] = None
    awb_enable: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resolution": [int(self.resolution[0]), int(self.resolution[1])],
            "fps": float(self.fps),
            "exposure_us": self.exposure_us,
            "analogue_gain": self.analogue_gain,
            "awb_enable": self.awb_enable,
        }
