"""
Synthetic stereo capture data: checkerboard poses projected through a known
camera, and a detector that looks patterns up by frame brightness.
"""

import cv2
import numpy as np

from stereo_calib.calibration.solver import board_object_points
from stereo_calib.core.models import BoardConfig, CameraIntrinsics, StereoIntrinsics


IMAGE_SIZE = (800, 600)
TRUE_MATRIX = np.array([[600.0, 0.0, 400.0], [0.0, 600.0, 300.0], [0.0, 0.0, 1.0]])
TRUE_COEFFS = np.array([-0.08, 0.01, 0.0, 0.0, 0.0])
RIGHT_BASELINE_MM = 60.0

# Board centre offsets from the principal point in pixels, alternating sides so
# consecutive poses are far apart, plus a tilt per pose.
_CENTRES = [(-180, -110), (180, -60), (-180, 0), (180, 60), (-180, 110), (180, -110),
            (-180, -60), (180, 0), (-180, 60), (180, 110), (-180, -30), (180, 30)]
_TILTS = [(0.25, 0.0, 0.0), (-0.25, 0.1, 0.05), (0.0, 0.3, -0.05), (0.1, -0.3, 0.0),
          (-0.2, -0.2, 0.1), (0.2, 0.2, -0.1), (0.3, 0.1, 0.0), (-0.1, 0.25, 0.05),
          (0.15, -0.15, -0.05), (-0.3, 0.0, 0.1), (0.05, 0.3, 0.0), (-0.15, -0.25, -0.1)]


def default_intrinsics(width=IMAGE_SIZE[0], height=IMAGE_SIZE[1]):
    return StereoIntrinsics(
        left=CameraIntrinsics.default(width, height),
        right=CameraIntrinsics.default(width, height),
        source="default",
    )


def board_pose(index, board, depth_mm=500.0):
    """rvec, tvec placing the board centre at the indexed pixel offset."""
    dx, dy = _CENTRES[index % len(_CENTRES)]
    rvec = np.array(_TILTS[index % len(_TILTS)], dtype=np.float64)
    rot, _ = cv2.Rodrigues(rvec)
    f = TRUE_MATRIX[0, 0]
    centre_world = np.array([dx * depth_mm / f, dy * depth_mm / f, depth_mm])
    half = np.array([
        (board.pattern_cols - 1) * board.square_length_mm / 2.0,
        (board.pattern_rows - 1) * board.square_length_mm / 2.0,
        0.0,
    ])
    tvec = centre_world - rot @ half
    return rvec, tvec


def project(board, rvec, tvec, matrix=TRUE_MATRIX, coeffs=TRUE_COEFFS):
    pts, _ = cv2.projectPoints(board_object_points(board), rvec, tvec, matrix, coeffs)
    return pts.reshape(-1, 2).astype(np.float32)


def stereo_patterns(board, count):
    """Per-pose (left, right) patterns; the right camera sits RIGHT_BASELINE_MM to the right."""
    out = []
    for i in range(count):
        rvec, tvec = board_pose(i, board)
        right_tvec = tvec - np.array([RIGHT_BASELINE_MM, 0.0, 0.0])
        out.append((project(board, rvec, tvec), project(board, rvec, right_tvec)))
    return out


def frame(value, size=IMAGE_SIZE):
    width, height = size
    return np.full((height, width, 3), value, dtype=np.uint8)


class LookupDetector:
    """
    Stands in for detect_pattern: the frame's top-left grey value selects the
    pattern, 0 means no board in view.
    """

    def __init__(self):
        self.table = {}

    def add(self, value, pattern):
        self.table[int(value)] = np.asarray(pattern, dtype=np.float32)
        return value

    def __call__(self, gray, board):
        pattern = self.table.get(int(gray[0, 0]))
        return None if pattern is None else pattern.copy()


def stereo_frames(board, detector, count, repeats=2):
    """
    Frame pairs showing ``count`` poses, each held for ``repeats`` ticks so
    the stability check can pass. Left uses values 1..count, right 101...
    """
    pairs = []
    for i, (left, right) in enumerate(stereo_patterns(board, count)):
        lv = detector.add(1 + i, left)
        rv = detector.add(101 + i, right)
        pairs.extend([(frame(lv), frame(rv))] * repeats)
    return pairs
