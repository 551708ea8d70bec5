"""
Unit tests for checkerboard detection.
"""

import unittest

import cv2
import numpy as np

from stereo_calib.calibration.checkerboard import detect_pattern, outline_corners
from stereo_calib.core.models import BoardConfig


def render_board(board, square_px=40, margin=80):
    """White image with a fronto-parallel board of (cols+1) x (rows+1) squares."""
    w = (board.pattern_cols + 1) * square_px + 2 * margin
    h = (board.pattern_rows + 1) * square_px + 2 * margin
    img = np.full((h, w), 255, dtype=np.uint8)
    for r in range(board.pattern_rows + 1):
        for c in range(board.pattern_cols + 1):
            if (r + c) % 2 == 0:
                y0, x0 = margin + r * square_px, margin + c * square_px
                img[y0:y0 + square_px, x0:x0 + square_px] = 0
    return cv2.GaussianBlur(img, (3, 3), 0)


class TestDetectPattern(unittest.TestCase):
    """Test corner detection on rendered boards."""

    def setUp(self):
        self.board = BoardConfig()

    def test_rendered_board(self):
        square, margin = 40, 80
        pattern = detect_pattern(render_board(self.board, square, margin), self.board)
        self.assertIsNotNone(pattern)
        self.assertEqual(pattern.shape, (54, 2))
        self.assertEqual(pattern.dtype, np.float32)
        # Every corner sits on a square intersection.
        offsets = (pattern - margin) / square
        np.testing.assert_allclose(offsets, np.round(offsets), atol=0.05)

    def test_blank_image(self):
        blank = np.full((480, 640), 128, dtype=np.uint8)
        self.assertIsNone(detect_pattern(blank, self.board))

    def test_rejects_colour_input(self):
        with self.assertRaises(ValueError):
            detect_pattern(np.zeros((48, 64, 3), dtype=np.uint8), self.board)

    def test_outline_corners(self):
        pattern = np.arange(54 * 2, dtype=np.float32).reshape(54, 2)
        outline = outline_corners(pattern, self.board)
        np.testing.assert_array_equal(outline, pattern[[0, 8, 53, 45]])


if __name__ == "__main__":
    unittest.main()
