"""
Unit tests for the two-camera capture workflow.
"""

import unittest

import numpy as np

from stereo_calib.calibration.session import SessionState
from stereo_calib.calibration.sink import MemoryResultSink
from stereo_calib.calibration.solver import SolverConfig
from stereo_calib.calibration.undistort import max_displacement
from stereo_calib.calibration.workflow import (
    AwaitingBoardSettings,
    Capturing,
    CaptureStateMachine,
    Complete,
    Computing,
    Failed,
    Idle,
    OverwriteWarning,
    both_sessions_full,
)
from stereo_calib.core.models import BoardConfig, CameraIntrinsics

from synthetic import LookupDetector, default_intrinsics, frame, stereo_frames


def make_machine(sink=None, background=False, solver_cfg=None, target=12):
    detector = LookupDetector()
    board = BoardConfig(target_sample_count=target)
    machine = CaptureStateMachine(
        default_intrinsics=default_intrinsics(),
        board=board,
        solver_cfg=solver_cfg,
        sink=sink if sink is not None else MemoryResultSink(),
        detector=detector,
        background_solve=background,
    )
    return machine, detector


def to_capturing(machine, square_mm=None):
    machine.start()
    if isinstance(machine.state, OverwriteWarning):
        machine.acknowledge_warning()
    if square_mm is not None:
        machine.set_square_length(square_mm)
    machine.confirm_board_settings()


def capture_poses(machine, pairs, repeats=2):
    """Show each pose ``repeats`` ticks, then commit."""
    for i in range(0, len(pairs), repeats):
        for pair in pairs[i:i + repeats]:
            machine.tick(pair)
        machine.commit()


class TestJoin(unittest.TestCase):
    """Test the both-sessions-full predicate."""

    def test_join(self):
        board = BoardConfig(target_sample_count=2)
        left = SessionState("left", CameraIntrinsics.default(64, 48), board)
        right = SessionState("right", CameraIntrinsics.default(64, 48), board)
        pattern = np.zeros((54, 2), dtype=np.float32)
        left.samples = [pattern, pattern]
        right.samples = [pattern]
        self.assertFalse(both_sessions_full(left, right, 2))
        right.samples.append(pattern)
        self.assertTrue(both_sessions_full(left, right, 2))


class TestSetup(unittest.TestCase):
    """Test the steps before capture."""

    def test_start_without_calibration(self):
        machine, _ = make_machine()
        self.assertIsInstance(machine.state, Idle)
        self.assertTrue(machine.start())
        self.assertIsInstance(machine.state, AwaitingBoardSettings)
        self.assertEqual(machine.state.square_length_mm, 24.0)

    def test_start_with_existing_calibration(self):
        sink = MemoryResultSink(active=default_intrinsics())
        machine, _ = make_machine(sink=sink)
        machine.start()
        self.assertIsInstance(machine.state, OverwriteWarning)
        self.assertTrue(machine.acknowledge_warning())
        self.assertIsInstance(machine.state, AwaitingBoardSettings)

    def test_square_length_clamped(self):
        machine, _ = make_machine()
        machine.start()
        machine.set_square_length(500.0)
        self.assertEqual(machine.state.square_length_mm, 100.0)
        machine.set_square_length(0.2)
        self.assertEqual(machine.state.square_length_mm, 1.0)
        machine.set_square_length(30.0)
        machine.confirm_board_settings()
        self.assertIsInstance(machine.state, Capturing)
        self.assertEqual(machine.board.square_length_mm, 30.0)
        self.assertEqual(machine.left.board.square_length_mm, 30.0)

    def test_out_of_state_commands_ignored(self):
        machine, _ = make_machine()
        self.assertFalse(machine.commit())
        self.assertFalse(machine.acknowledge_warning())
        self.assertFalse(machine.confirm_board_settings())
        self.assertFalse(machine.restart())
        self.assertFalse(machine.retry_solve())
        self.assertIsInstance(machine.state, Idle)

    def test_sessions_independent(self):
        machine, _ = make_machine()
        to_capturing(machine)
        self.assertIsNot(machine.left.intrinsic_matrix, machine.right.intrinsic_matrix)
        self.assertIsNot(machine.left.samples, machine.right.samples)


class TestCapture(unittest.TestCase):
    """Test capture through to a finished calibration."""

    def test_full_capture_completes(self):
        sink = MemoryResultSink()
        machine, detector = make_machine(sink=sink)
        to_capturing(machine)
        pairs = stereo_frames(machine.board, detector, 12)
        capture_poses(machine, pairs[:-2])
        self.assertAlmostEqual(machine.progress(), 11 / 12)
        self.assertIsInstance(machine.state, Capturing)

        capture_poses(machine, pairs[-2:])
        self.assertIsInstance(machine.state, Complete)
        for side in ("left", "right"):
            session = machine.session(side)
            self.assertEqual(session.accepted_count, 12)
            self.assertLess(session.reprojection_error, 0.5)
            self.assertGreater(max_displacement(session.distortion_map), 0.5)
        self.assertEqual(machine.preview_mode, "undistorted")
        self.assertEqual(len(sink.published), 1)
        self.assertEqual(machine.status()["state"], "complete")

    def test_restart_discards_samples(self):
        machine, detector = make_machine()
        to_capturing(machine)
        pairs = stereo_frames(machine.board, detector, 5)
        capture_poses(machine, pairs)
        self.assertEqual(machine.left.accepted_count, 5)

        self.assertTrue(machine.restart())
        self.assertIsInstance(machine.state, Capturing)
        for session in (machine.left, machine.right):
            self.assertEqual(session.accepted_count, 0)
            self.assertEqual(session.overlay_corners, [])
            np.testing.assert_array_equal(session.intrinsic_matrix, session.baseline.camera_matrix)

    def test_held_board_accepted_once(self):
        machine, detector = make_machine()
        to_capturing(machine)
        pair = stereo_frames(machine.board, detector, 1, repeats=1)[0]
        machine.tick(pair)
        self.assertTrue(machine.commit())
        for _ in range(5):
            machine.tick(pair)
            self.assertFalse(machine.commit())
        self.assertEqual(machine.left.accepted_count, 1)
        self.assertEqual(machine.right.accepted_count, 1)
        self.assertEqual(machine.left.last_verdict.reason, "not_relocated")

    def test_double_commit_in_one_tick(self):
        machine, detector = make_machine()
        to_capturing(machine)
        pair = stereo_frames(machine.board, detector, 1, repeats=1)[0]
        machine.tick(pair)
        self.assertTrue(machine.commit())
        self.assertFalse(machine.commit())
        self.assertEqual(machine.left.accepted_count, 1)
        self.assertEqual(machine.right.accepted_count, 1)

    def test_one_camera_full_keeps_capturing(self):
        machine, detector = make_machine(target=2)
        to_capturing(machine)
        first, second = stereo_frames(machine.board, detector, 2, repeats=1)
        machine.tick(first)
        machine.commit()
        # Only the left camera sees the second pose.
        left_only = (second[0], frame(0))
        machine.tick(left_only)
        machine.tick(left_only)
        machine.commit()
        self.assertEqual(machine.left.accepted_count, 2)
        self.assertEqual(machine.right.accepted_count, 1)
        self.assertIsInstance(machine.state, Capturing)
        self.assertFalse(machine.solve_in_progress)

    def test_bad_frame_touches_neither_session(self):
        machine, detector = make_machine()
        to_capturing(machine)
        pair = stereo_frames(machine.board, detector, 1, repeats=1)[0]
        bad_right = pair[1].astype(np.float32)
        with self.assertRaises(ValueError):
            machine.tick((pair[0], bad_right))
        self.assertTrue(np.all(machine.left.buffers.bgr == 0))
        self.assertIsNone(machine.left.current_pattern)
        self.assertEqual(machine.frames_processed, 0)

    def test_commit_while_board_moving(self):
        machine, detector = make_machine()
        to_capturing(machine)
        pairs = stereo_frames(machine.board, detector, 2, repeats=1)
        machine.tick(pairs[0])
        machine.commit()
        machine.tick(pairs[1])
        self.assertFalse(machine.left.current_valid)
        self.assertFalse(machine.commit())
        self.assertEqual(machine.left.accepted_count, 1)
        self.assertEqual(machine.right.accepted_count, 1)
        self.assertIsInstance(machine.state, Capturing)

    def test_missing_frames_leave_state(self):
        machine, detector = make_machine()
        to_capturing(machine)
        pair = stereo_frames(machine.board, detector, 1, repeats=1)[0]
        machine.tick(pair)
        self.assertFalse(machine.tick(None))
        self.assertTrue(machine.left.current_valid)
        self.assertEqual(machine.frames_processed, 1)

    def test_restart_after_complete(self):
        machine, detector = make_machine(target=12)
        to_capturing(machine)
        capture_poses(machine, stereo_frames(machine.board, detector, 12))
        self.assertIsInstance(machine.state, Complete)
        self.assertTrue(machine.restart())
        self.assertEqual(machine.preview_mode, "bgr")
        np.testing.assert_array_equal(machine.left.intrinsic_matrix, machine.left.baseline.camera_matrix)
        for session in (machine.left, machine.right):
            self.assertEqual(session.samples, [])
            self.assertEqual(session.overlay_corners, [])
            self.assertIsNone(session.last_accepted_pattern)
            # Baseline has zero distortion, so the rebuilt map is the identity.
            self.assertLess(max_displacement(session.distortion_map), 1e-3)


class TestSolveFailure(unittest.TestCase):
    """Test that a failed solve changes nothing and can be retried."""

    def test_failure_then_retry(self):
        sink = MemoryResultSink()
        machine, detector = make_machine(sink=sink, solver_cfg=SolverConfig(min_matrix_determinant=1e12))
        to_capturing(machine)
        baseline = machine.left.intrinsic_matrix.copy()
        capture_poses(machine, stereo_frames(machine.board, detector, 12))

        self.assertIsInstance(machine.state, Computing)
        self.assertIsNotNone(machine.state.error)
        np.testing.assert_array_equal(machine.left.intrinsic_matrix, baseline)
        self.assertEqual(sink.published, [])

        machine.solver_cfg = SolverConfig()
        self.assertTrue(machine.retry_solve())
        self.assertIsInstance(machine.state, Complete)
        self.assertEqual(len(sink.published), 1)


class TestBackgroundSolve(unittest.TestCase):
    """Test the threaded solve hand-off."""

    def test_join_applies_result(self):
        machine, detector = make_machine(background=True)
        with machine:
            to_capturing(machine)
            capture_poses(machine, stereo_frames(machine.board, detector, 12))
            self.assertIsInstance(machine.state, (Computing, Complete))
            self.assertTrue(machine.join_solve(timeout=60.0))
            self.assertIsInstance(machine.state, Complete)

    def test_cancel_drops_solve(self):
        sink = MemoryResultSink()
        machine, detector = make_machine(sink=sink, background=True)
        to_capturing(machine)
        capture_poses(machine, stereo_frames(machine.board, detector, 12))
        machine.cancel()
        machine.join_solve(timeout=60.0)
        self.assertIsInstance(machine.state, Idle)
        self.assertIsNone(machine.left)
        self.assertEqual(sink.published, [])


class TestFailRecover(unittest.TestCase):
    """Test external failures."""

    def test_fail_and_recover(self):
        machine, detector = make_machine()
        to_capturing(machine)
        self.assertTrue(machine.fail("camera lost"))
        self.assertIsInstance(machine.state, Failed)
        self.assertEqual(machine.status()["resume"], "capturing")
        pair = stereo_frames(machine.board, detector, 1, repeats=1)[0]
        self.assertFalse(machine.tick(pair))
        self.assertTrue(machine.recover())
        self.assertIsInstance(machine.state, Capturing)
        self.assertTrue(machine.tick(pair))

    def test_preview_mode_cycle(self):
        machine, _ = make_machine()
        self.assertEqual(machine.next_preview_mode(), "grayscale")
        self.assertEqual(machine.next_preview_mode(), "undistorted")
        self.assertEqual(machine.next_preview_mode(), "bgr")
        self.assertEqual(machine.previous_preview_mode(), "undistorted")


if __name__ == "__main__":
    unittest.main()
