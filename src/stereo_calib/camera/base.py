"""Stereo video source interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from stereo_calib.core.models import CaptureParams


class StereoSourceBase(ABC):
    """Abstract two-camera frame source, polled once per tick."""

    @abstractmethod
    def start(self, params: CaptureParams) -> None:
        pass

    @abstractmethod
    def read_pair(self) -> Optional[tuple[np.ndarray, np.ndarray]]:
        """
        Return the latest (left, right) uint8 BGR frames, or None when no
        frame is available this tick.
        """
        pass

    def get_applied_controls(self) -> dict:
        """Return last applied camera controls/settings."""
        return {}

    def set_manual_controls(self, exposure_us: int, analogue_gain: float, awb_enable: bool = False) -> None:
        """Optional: override exposure and gain while capturing."""
        return None

    @abstractmethod
    def stop(self) -> None:
        pass
