"""Picamera2 implementation for dual-camera Raspberry Pi rigs."""

from __future__ import annotations

import logging
import time
from typing import Optional

import numpy as np

from stereo_calib.camera.base import StereoSourceBase
from stereo_calib.core.models import CaptureParams


log = logging.getLogger(__name__)


class Picamera2StereoSource(StereoSourceBase):
    """Two Picamera2/libcamera cameras, one per side of the rig."""

    def __init__(self, left_index: int = 0, right_index: int = 1) -> None:
        try:
            from picamera2 import Picamera2  # type: ignore
        except Exception as exc:
            raise RuntimeError(
                "Picamera2 not available. Install picamera2 or use MockStereoSource."
            ) from exc

        self._picamera2_cls = Picamera2
        self._indices = (int(left_index), int(right_index))
        self._cams: list = []
        self._applied_controls: dict = {}

    def _open(self, index: int):
        last_exc: Exception | None = None
        for _ in range(5):
            try:
                return self._picamera2_cls(index)
            except Exception as exc:
                last_exc = exc
                time.sleep(0.4)
        raise RuntimeError(f"Picamera2 camera {index} failed to initialise; camera may be busy.") from last_exc

    def start(self, params: CaptureParams) -> None:
        if self._cams:
            return
        width, height = params.resolution
        for index in self._indices:
            cam = self._open(index)
            # libcamera RGB888 is stored B, G, R in memory, which is what OpenCV expects.
            config = cam.create_video_configuration(
                main={"size": (width, height), "format": "RGB888"},
                controls={"FrameRate": float(params.fps)},
            )
            cam.configure(config)
            cam.start()
            self._cams.append(cam)
        time.sleep(0.2)
        if params.exposure_us is not None and params.analogue_gain is not None:
            self.set_manual_controls(params.exposure_us, params.analogue_gain, bool(params.awb_enable))

    def read_pair(self) -> Optional[tuple[np.ndarray, np.ndarray]]:
        if len(self._cams) != 2:
            raise RuntimeError("Camera not started")
        try:
            left = self._cams[0].capture_array("main")
            right = self._cams[1].capture_array("main")
        except Exception as exc:
            log.warning("Picamera2 frame capture failed: %s", exc)
            return None
        return left[:, :, :3].astype(np.uint8), right[:, :, :3].astype(np.uint8)

    def set_manual_controls(self, exposure_us: int, analogue_gain: float, awb_enable: bool = False) -> None:
        if not self._cams:
            raise RuntimeError("Camera not started")
        controls = {
            "AeEnable": False,
            "ExposureTime": int(exposure_us),
            "AnalogueGain": float(analogue_gain),
            "AwbEnable": bool(awb_enable),
        }
        for cam in self._cams:
            try:
                cam.set_controls(controls)
            except Exception as exc:
                raise RuntimeError(f"Failed to apply manual camera controls: {exc}") from exc
        self._applied_controls = dict(controls)

    def get_applied_controls(self) -> dict:
        return dict(self._applied_controls)

    def stop(self) -> None:
        for cam in self._cams:
            try:
                cam.stop()
                cam.close()
            except Exception as exc:
                log.warning("Picamera2 shutdown error: %s", exc)
        self._cams = []
        time.sleep(0.2)
