"""Preview broadcaster for the web UI."""

from __future__ import annotations

import threading
from io import BytesIO
from typing import Any, Dict, Optional, Tuple

import numpy as np
from PIL import Image


class PreviewBroadcaster:
    """Thread-safe storage of the latest preview JPEG bytes + metadata per camera."""

    def __init__(self, max_width: int = 640) -> None:
        self._lock = threading.Lock()
        self.max_width = int(max_width)
        self._latest: Dict[str, Tuple[bytes, Dict[str, Any]]] = {}

    def update(self, side: str, frame_bgr: np.ndarray, meta: Dict[str, Any]) -> None:
        img = Image.fromarray(np.ascontiguousarray(frame_bgr[:, :, ::-1]))
        if img.width > self.max_width:
            scale = self.max_width / float(img.width)
            img = img.resize((self.max_width, int(img.height * scale)))
        buffer = BytesIO()
        img.save(buffer, format="JPEG", quality=75)
        data = buffer.getvalue()
        with self._lock:
            self._latest[side] = (data, dict(meta))

    def get_latest(self, side: str) -> Optional[Tuple[bytes, Dict[str, Any]]]:
        with self._lock:
            item = self._latest.get(side)
            if item is None:
                return None
            return item[0], dict(item[1])

    def clear(self) -> None:
        with self._lock:
            self._latest.clear()
