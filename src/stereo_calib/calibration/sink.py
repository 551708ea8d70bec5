"""Result sinks that make a finished calibration the cameras' active intrinsics."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import numpy as np

from stereo_calib.core.models import (
    DISTORTION_NAMES,
    BoardConfig,
    CalibrationResult,
    CameraIntrinsics,
    StereoIntrinsics,
)


log = logging.getLogger(__name__)


def distortion_to_dict(coeffs: np.ndarray, legacy_k3_slot: bool = False) -> dict[str, float]:
    """
    Name the five coefficients (k1, k2, p1, p2, k3).

    ``legacy_k3_slot`` reproduces the field writer of the older calibration
    tool, which wrote k2 into the k3 field and then overwrote it with k3, so
    k2 was never stored and read back as 0.0.
    """
    d = np.asarray(coeffs, dtype=np.float64).reshape(-1)
    named = {name: float(d[i]) if i < d.size else 0.0 for i, name in enumerate(DISTORTION_NAMES)}
    if legacy_k3_slot:
        named["k2"] = 0.0
    return named


def distortion_from_dict(data: dict[str, Any]) -> np.ndarray:
    return np.array([float(data.get(name, 0.0)) for name in DISTORTION_NAMES], dtype=np.float64)


class ResultSink(ABC):
    """Receives both camera results once the workflow completes."""

    @abstractmethod
    def publish(self, left: CalibrationResult, right: CalibrationResult, board: BoardConfig | None = None) -> None:
        pass

    @abstractmethod
    def load_active(self) -> Optional[StereoIntrinsics]:
        """Return the currently active calibration, or None if none was ever stored."""
        pass


class MemoryResultSink(ResultSink):
    """In-process sink; keeps the published results on the instance."""

    def __init__(self, active: StereoIntrinsics | None = None) -> None:
        self.active = active
        self.published: list[tuple[CalibrationResult, CalibrationResult]] = []

    def publish(self, left: CalibrationResult, right: CalibrationResult, board: BoardConfig | None = None) -> None:
        self.published.append((left, right))
        self.active = StereoIntrinsics(left=left.intrinsics(), right=right.intrinsics(), source="memory")

    def load_active(self) -> Optional[StereoIntrinsics]:
        return self.active


class JsonResultSink(ResultSink):
    """Filesystem-backed sink writing intrinsics_latest.json plus a timestamped history."""

    def __init__(self, root: str = "data/calibration", legacy_k3_slot: bool = False) -> None:
        self.root = Path(root)
        self.history_root = self.root / "history"
        self.history_root.mkdir(parents=True, exist_ok=True)
        self.legacy_k3_slot = bool(legacy_k3_slot)
        if self.legacy_k3_slot:
            log.warning("legacy_k3_slot enabled: k2 will not be persisted (stored as 0.0)")

    @property
    def latest_path(self) -> Path:
        return self.root / "intrinsics_latest.json"

    def _camera_payload(self, result: CalibrationResult) -> dict[str, Any]:
        payload = result.to_dict()
        payload["distortion"] = distortion_to_dict(result.distortion_coeffs, self.legacy_k3_slot)
        return payload

    def publish(self, left: CalibrationResult, right: CalibrationResult, board: BoardConfig | None = None) -> None:
        now = datetime.now()
        payload: dict[str, Any] = {
            "created_at": now.isoformat(),
            "left": self._camera_payload(left),
            "right": self._camera_payload(right),
        }
        if board is not None:
            payload["board"] = board.to_dict()

        stamp = now.strftime("%Y%m%d_%H%M%S")
        name = f"intrinsics_{stamp}.json"
        i = 0
        while (self.history_root / name).exists():
            i += 1
            name = f"intrinsics_{stamp}_{i:02d}.json"
        text = json.dumps(payload, indent=2)
        (self.history_root / name).write_text(text)
        self.latest_path.write_text(text)
        log.info(
            "Published calibration to %s (rms left=%.4f right=%.4f)",
            self.latest_path,
            left.reprojection_error,
            right.reprojection_error,
        )

    def load_active(self) -> Optional[StereoIntrinsics]:
        if not self.latest_path.exists():
            return None
        data = json.loads(self.latest_path.read_text())
        return StereoIntrinsics(
            left=_camera_from_payload(data["left"]),
            right=_camera_from_payload(data["right"]),
            source=str(self.latest_path),
        )


def _camera_from_payload(data: dict[str, Any]) -> CameraIntrinsics:
    intr = CameraIntrinsics.from_dict(data)
    if "distortion" in data:
        intr.dist_coeffs = distortion_from_dict(data["distortion"])
    return intr
