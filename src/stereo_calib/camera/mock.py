"""Mock stereo source that reads left/right images from disk or memory."""

from __future__ import annotations

from pathlib import Path
import itertools
from typing import Iterator, Optional, Sequence

import numpy as np
from PIL import Image

from stereo_calib.camera.base import StereoSourceBase
from stereo_calib.core.models import CaptureParams


_IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg"}


def _load_bgr(path: Path) -> np.ndarray:
    rgb = np.array(Image.open(path).convert("RGB"), dtype=np.uint8)
    return np.ascontiguousarray(rgb[:, :, ::-1])


class MockStereoSource(StereoSourceBase):
    """
    Returns frame pairs in sequence, from ``data_dir/left`` and
    ``data_dir/right`` (sorted, paired by position) or from ``frames``.
    With ``loop=False`` the source runs dry and then returns None.
    """

    def __init__(
        self,
        data_dir: str | None = "mock_data",
        frames: Sequence[tuple[np.ndarray, np.ndarray]] | None = None,
        loop: bool = True,
    ) -> None:
        self.data_dir = Path(data_dir) if data_dir else None
        self._frames = list(frames) if frames is not None else None
        self.loop = loop
        self._iter: Optional[Iterator] = None
        self._controls: dict = {}

    def _pairs_from_disk(self) -> list[tuple[Path, Path]]:
        assert self.data_dir is not None
        left_dir = self.data_dir / "left"
        right_dir = self.data_dir / "right"
        if not left_dir.is_dir() or not right_dir.is_dir():
            raise RuntimeError(f"Mock data dir must contain left/ and right/: {self.data_dir}")
        lefts = sorted(p for p in left_dir.iterdir() if p.suffix.lower() in _IMAGE_SUFFIXES)
        rights = sorted(p for p in right_dir.iterdir() if p.suffix.lower() in _IMAGE_SUFFIXES)
        pairs = list(zip(lefts, rights))
        if not pairs:
            raise RuntimeError(f"No mock image pairs in {self.data_dir}")
        return pairs

    def start(self, params: CaptureParams) -> None:
        if self._frames is not None:
            items: list = self._frames
        else:
            if self.data_dir is None or not self.data_dir.exists():
                raise RuntimeError(f"Mock data dir not found: {self.data_dir}")
            items = self._pairs_from_disk()
        self._iter = itertools.cycle(items) if self.loop else iter(items)

    def read_pair(self) -> Optional[tuple[np.ndarray, np.ndarray]]:
        if self._iter is None:
            raise RuntimeError("MockStereoSource not started")
        item = next(self._iter, None)
        if item is None:
            return None
        left, right = item
        if isinstance(left, Path):
            return _load_bgr(left), _load_bgr(right)
        return left, right

    def set_manual_controls(self, exposure_us: int, analogue_gain: float, awb_enable: bool = False) -> None:
        self._controls = {
            "ExposureTime": int(exposure_us),
            "AnalogueGain": float(analogue_gain),
            "AwbEnable": bool(awb_enable),
        }

    def get_applied_controls(self) -> dict:
        return dict(self._controls)

    def stop(self) -> None:
        self._iter = None
