"""
Unit tests for the intrinsics solver.
"""

import unittest

import numpy as np

from stereo_calib.calibration.solver import (
    NotEnoughSamples,
    NumericalFailure,
    SolverConfig,
    board_object_points,
    solve_intrinsics,
)
from stereo_calib.core.models import BoardConfig, CameraIntrinsics

from synthetic import IMAGE_SIZE, TRUE_COEFFS, TRUE_MATRIX, stereo_patterns


class TestSolver(unittest.TestCase):
    """Test solving from projected board views."""

    def setUp(self):
        self.board = BoardConfig()
        self.samples = [left for left, _ in stereo_patterns(self.board, 12)]
        self.initial = CameraIntrinsics.default(*IMAGE_SIZE)

    def solve(self, samples=None, cfg=None):
        return solve_intrinsics(
            "left",
            self.samples if samples is None else samples,
            self.board,
            IMAGE_SIZE,
            self.initial.camera_matrix,
            self.initial.dist_coeffs,
            cfg,
        )

    def test_object_points(self):
        objp = board_object_points(self.board)
        self.assertEqual(objp.shape, (54, 3))
        np.testing.assert_allclose(objp[1], [24.0, 0.0, 0.0])
        np.testing.assert_allclose(objp[9], [0.0, 24.0, 0.0])

    def test_recovers_camera(self):
        result = self.solve()
        self.assertLess(result.reprojection_error, 0.5)
        self.assertAlmostEqual(result.intrinsic_matrix[0, 0], TRUE_MATRIX[0, 0], delta=3.0)
        self.assertAlmostEqual(result.intrinsic_matrix[1, 1], TRUE_MATRIX[1, 1], delta=3.0)
        self.assertAlmostEqual(result.intrinsic_matrix[0, 2], TRUE_MATRIX[0, 2], delta=5.0)
        self.assertAlmostEqual(result.intrinsic_matrix[1, 2], TRUE_MATRIX[1, 2], delta=5.0)
        self.assertAlmostEqual(result.distortion_coeffs[0], TRUE_COEFFS[0], delta=0.02)
        self.assertEqual(result.samples_used, 12)
        self.assertEqual(len(result.per_view_errors), 12)

    def test_inputs_not_modified(self):
        before = [s.copy() for s in self.samples]
        matrix = self.initial.camera_matrix.copy()
        self.solve()
        for a, b in zip(before, self.samples):
            np.testing.assert_array_equal(a, b)
        np.testing.assert_array_equal(matrix, self.initial.camera_matrix)

    def test_not_enough_samples(self):
        with self.assertRaises(NotEnoughSamples):
            self.solve(samples=self.samples[:3])

    def test_implausible_result(self):
        with self.assertRaises(NumericalFailure):
            self.solve(cfg=SolverConfig(min_matrix_determinant=1e12))


if __name__ == "__main__":
    unittest.main()
