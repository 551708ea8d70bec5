"""OpenCV VideoCapture stereo source: one side-by-side device or two devices."""

from __future__ import annotations

import logging
from typing import Optional

import cv2
import numpy as np

from stereo_calib.camera.base import StereoSourceBase
from stereo_calib.core.models import CaptureParams


log = logging.getLogger(__name__)


def split_side_by_side(frame: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Split a side-by-side stereo frame into (left, right) halves."""
    mid = frame.shape[1] // 2
    return np.ascontiguousarray(frame[:, :mid]), np.ascontiguousarray(frame[:, mid:2 * mid])


class OpenCVStereoSource(StereoSourceBase):
    """
    With ``right_device=None`` the device delivers both views side by side in
    one frame (each view is ``resolution`` wide); otherwise each device is one
    camera.
    """

    def __init__(self, device: int | str = 0, right_device: int | str | None = None) -> None:
        self.device = device
        self.right_device = right_device
        self._caps: list[cv2.VideoCapture] = []
        self._applied_controls: dict = {}

    def _open(self, device: int | str, width: int, height: int, fps: float) -> cv2.VideoCapture:
        cap = cv2.VideoCapture(device)
        if not cap.isOpened():
            raise RuntimeError(f"Could not open video device {device!r}")
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        cap.set(cv2.CAP_PROP_FPS, fps)
        return cap

    def start(self, params: CaptureParams) -> None:
        if self._caps:
            return
        width, height = params.resolution
        if self.right_device is None:
            self._caps = [self._open(self.device, width * 2, height, params.fps)]
        else:
            self._caps = [
                self._open(self.device, width, height, params.fps),
                self._open(self.right_device, width, height, params.fps),
            ]
        if params.exposure_us is not None and params.analogue_gain is not None:
            self.set_manual_controls(params.exposure_us, params.analogue_gain, bool(params.awb_enable))

    def read_pair(self) -> Optional[tuple[np.ndarray, np.ndarray]]:
        if not self._caps:
            raise RuntimeError("Camera not started")
        frames = []
        for cap in self._caps:
            ok, frame = cap.read()
            if not ok or frame is None:
                return None
            frames.append(frame)
        if len(frames) == 1:
            return split_side_by_side(frames[0])
        return frames[0], frames[1]

    def set_manual_controls(self, exposure_us: int, analogue_gain: float, awb_enable: bool = False) -> None:
        if not self._caps:
            raise RuntimeError("Camera not started")
        for cap in self._caps:
            cap.set(cv2.CAP_PROP_AUTO_EXPOSURE, 0.25)
            cap.set(cv2.CAP_PROP_EXPOSURE, float(exposure_us))
            cap.set(cv2.CAP_PROP_GAIN, float(analogue_gain))
            cap.set(cv2.CAP_PROP_AUTO_WB, 1.0 if awb_enable else 0.0)
        self._applied_controls = {
            "ExposureTime": int(exposure_us),
            "AnalogueGain": float(analogue_gain),
            "AwbEnable": bool(awb_enable),
        }

    def get_applied_controls(self) -> dict:
        return dict(self._applied_controls)

    def stop(self) -> None:
        for cap in self._caps:
            cap.release()
        self._caps = []
