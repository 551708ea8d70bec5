"""Undistortion remap tables for per-camera preview."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np


@dataclass(slots=True)
class DistortionMap:
    """x-source and y-source lookup tables, float32, shaped (height, width)."""
    map_x: np.ndarray
    map_y: np.ndarray

    @property
    def size(self) -> tuple[int, int]:
        h, w = self.map_x.shape[:2]
        return (int(w), int(h))


def build_distortion_map(
    camera_matrix: np.ndarray,
    dist_coeffs: np.ndarray,
    image_size: tuple[int, int],
) -> DistortionMap:
    """
    Monocular undistortion map: no rectification rotation, and the camera
    matrix doubles as the new camera matrix.
    """
    width, height = int(image_size[0]), int(image_size[1])
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size for distortion map: {image_size}")
    k = np.asarray(camera_matrix, dtype=np.float64).reshape(3, 3)
    d = np.asarray(dist_coeffs, dtype=np.float64).reshape(-1, 1)
    map_x, map_y = cv2.initUndistortRectifyMap(k, d, None, k, (width, height), cv2.CV_32FC1)
    return DistortionMap(map_x=map_x, map_y=map_y)


def identity_map(image_size: tuple[int, int]) -> DistortionMap:
    width, height = int(image_size[0]), int(image_size[1])
    xs, ys = np.meshgrid(
        np.arange(width, dtype=np.float32),
        np.arange(height, dtype=np.float32),
    )
    return DistortionMap(map_x=xs, map_y=ys)


def max_displacement(dmap: DistortionMap) -> float:
    """Largest distance in pixels between an output pixel and its source."""
    ident = identity_map(dmap.size)
    dx = dmap.map_x - ident.map_x
    dy = dmap.map_y - ident.map_y
    return float(np.max(np.hypot(dx, dy)))


def undistort_image(image: np.ndarray, dmap: DistortionMap, out: np.ndarray | None = None) -> np.ndarray:
    return cv2.remap(
        image,
        dmap.map_x,
        dmap.map_y,
        interpolation=cv2.INTER_LINEAR,
        dst=out,
        borderMode=cv2.BORDER_CONSTANT,
    )
