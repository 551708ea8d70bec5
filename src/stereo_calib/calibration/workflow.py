"""Two-camera guided capture workflow: board settings, capture, solve, complete."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, ClassVar, Dict, Optional, Union

import numpy as np

from stereo_calib.calibration.checkerboard import detect_pattern
from stereo_calib.calibration.gate import GateThresholds
from stereo_calib.calibration.session import PREVIEW_MODES, Detector, PreviewMode, SessionState, validate_frame
from stereo_calib.calibration.sink import ResultSink
from stereo_calib.calibration.solver import NumericalFailure, SolverConfig, solve_intrinsics
from stereo_calib.core.models import (
    BoardConfig,
    CalibrationResult,
    CameraSide,
    StereoIntrinsics,
    clamp_square_length,
)


log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Idle:
    tag: ClassVar[str] = "idle"


@dataclass(frozen=True, slots=True)
class OverwriteWarning:
    """The cameras already carry a stored calibration that capture will replace."""
    tag: ClassVar[str] = "overwrite_warning"


@dataclass(frozen=True, slots=True)
class AwaitingBoardSettings:
    square_length_mm: float
    tag: ClassVar[str] = "awaiting_board_settings"


@dataclass(frozen=True, slots=True)
class Capturing:
    tag: ClassVar[str] = "capturing"


@dataclass(frozen=True, slots=True)
class Computing:
    attempt: int = 1
    error: Optional[str] = None
    tag: ClassVar[str] = "computing"


@dataclass(frozen=True, slots=True)
class Complete:
    left: CalibrationResult
    right: CalibrationResult
    tag: ClassVar[str] = "complete"


@dataclass(frozen=True, slots=True)
class Failed:
    reason: str
    resume: "WorkflowState"
    tag: ClassVar[str] = "failed"


WorkflowState = Union[Idle, OverwriteWarning, AwaitingBoardSettings, Capturing, Computing, Complete, Failed]


def both_sessions_full(left: SessionState, right: SessionState, target: int) -> bool:
    return left.accepted_count >= target and right.accepted_count >= target


@dataclass(slots=True)
class _SolveOutcome:
    generation: int
    results: Optional[Dict[str, CalibrationResult]]
    error: Optional[str]


class CaptureStateMachine:
    """
    Drives one SessionState per camera through the calibration workflow.

    Single-threaded: every method must be called from the owner's thread.
    The only concurrency is the background solve, whose outcome is handed
    back through ``poll_solve`` and applied to both sessions at once.
    """

    def __init__(
        self,
        default_intrinsics: StereoIntrinsics,
        board: BoardConfig | None = None,
        thresholds: GateThresholds | None = None,
        solver_cfg: SolverConfig | None = None,
        sink: ResultSink | None = None,
        detector: Detector = detect_pattern,
        background_solve: bool = True,
    ) -> None:
        self.default_intrinsics = default_intrinsics
        self.baseline = default_intrinsics
        self.board = board or BoardConfig()
        self.thresholds = thresholds or GateThresholds()
        self.solver_cfg = solver_cfg or SolverConfig()
        self.sink = sink
        self.detector = detector
        self.background_solve = background_solve

        self.state: WorkflowState = Idle()
        self.left: Optional[SessionState] = None
        self.right: Optional[SessionState] = None
        self.preview_mode: PreviewMode = "bgr"
        self.frames_processed = 0

        self._generation = 0
        self._solve_lock = threading.Lock()
        self._solve_thread: Optional[threading.Thread] = None
        self._pending: Optional[_SolveOutcome] = None

    def __enter__(self) -> "CaptureStateMachine":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -- state transitions ----------------------------------------------------

    def _set_state(self, new_state: WorkflowState) -> None:
        if new_state.tag != self.state.tag:
            log.info("Workflow %s -> %s", self.state.tag, new_state.tag)
        self.state = new_state

    def _ignored(self, command: str) -> bool:
        log.debug("Ignoring %s in state %s", command, self.state.tag)
        return False

    def start(self, has_existing_calibration: bool | None = None) -> bool:
        if not isinstance(self.state, Idle):
            return self._ignored("start")
        active = self.sink.load_active() if self.sink is not None else None
        self.baseline = active or self.default_intrinsics
        if has_existing_calibration is None:
            has_existing_calibration = active is not None
        if has_existing_calibration:
            self._set_state(OverwriteWarning())
        else:
            self._set_state(AwaitingBoardSettings(square_length_mm=self.board.square_length_mm))
        return True

    def acknowledge_warning(self) -> bool:
        if not isinstance(self.state, OverwriteWarning):
            return self._ignored("acknowledge_warning")
        self._set_state(AwaitingBoardSettings(square_length_mm=self.board.square_length_mm))
        return True

    def set_square_length(self, square_length_mm: float) -> bool:
        if not isinstance(self.state, AwaitingBoardSettings):
            return self._ignored("set_square_length")
        self._set_state(AwaitingBoardSettings(square_length_mm=clamp_square_length(square_length_mm)))
        return True

    def confirm_board_settings(self) -> bool:
        if not isinstance(self.state, AwaitingBoardSettings):
            return self._ignored("confirm_board_settings")
        self.board = replace(self.board, square_length_mm=self.state.square_length_mm)
        self._release_sessions()
        self.left = self._new_session("left")
        self.right = self._new_session("right")
        self.preview_mode = "bgr"
        log.info("Board confirmed: %s", self.board.to_dict())
        self._set_state(Capturing())
        return True

    def _new_session(self, side: CameraSide) -> SessionState:
        return SessionState(
            side=side,
            baseline=self.baseline.get(side),
            board=self.board,
            thresholds=self.thresholds,
            detector=self.detector,
        )

    def tick(self, frames: Optional[tuple[np.ndarray, np.ndarray]]) -> bool:
        """
        Process one frame pair. ``None`` means the source had nothing this
        tick; session state is left untouched. Returns True if frames were
        ingested.
        """
        self.poll_solve()
        if frames is None:
            return False
        if isinstance(self.state, Failed) or self.left is None or self.right is None:
            return False
        left_frame, right_frame = frames
        # Both frames are checked before either session is touched.
        validate_frame(left_frame)
        validate_frame(right_frame)

        self.left.ingest(left_frame)
        self.right.ingest(right_frame)
        if isinstance(self.state, Capturing):
            for session in (self.left, self.right):
                if not session.is_full:
                    session.detect_and_gate()
        self.frames_processed += 1
        return True

    def commit(self) -> bool:
        """Try to accept the current pattern in both sessions (one board seen by both cameras)."""
        if not isinstance(self.state, Capturing) or self.left is None or self.right is None:
            return self._ignored("commit")
        accepted_left = self.left.try_commit()
        accepted_right = self.right.try_commit()
        if both_sessions_full(self.left, self.right, self.board.target_sample_count):
            self._start_solve(attempt=1)
        return accepted_left or accepted_right

    def retry_solve(self) -> bool:
        if not isinstance(self.state, Computing) or self.state.error is None or self.solve_in_progress:
            return self._ignored("retry_solve")
        self._start_solve(attempt=self.state.attempt + 1)
        return True

    def restart(self) -> bool:
        """Discard captured samples and return to capture with the pre-capture calibration."""
        restartable = isinstance(self.state, (Capturing, Complete)) or (
            isinstance(self.state, Computing) and self.state.error is not None and not self.solve_in_progress
        )
        if not restartable or self.left is None or self.right is None:
            return self._ignored("restart")
        self._generation += 1
        self.left.reset()
        self.right.reset()
        self.preview_mode = "bgr"
        self._set_state(Capturing())
        return True

    def fail(self, reason: str) -> bool:
        if isinstance(self.state, Failed):
            return self._ignored("fail")
        log.error("Workflow failed in %s: %s", self.state.tag, reason)
        self._set_state(Failed(reason=str(reason), resume=self.state))
        return True

    def recover(self) -> bool:
        if not isinstance(self.state, Failed):
            return self._ignored("recover")
        self._set_state(self.state.resume)
        return True

    def cancel(self) -> bool:
        if isinstance(self.state, Idle):
            return self._ignored("cancel")
        self._generation += 1
        self._release_sessions()
        self.preview_mode = "bgr"
        self._set_state(Idle())
        return True

    def close(self) -> None:
        self._generation += 1
        self._release_sessions()
        self.state = Idle()

    def _release_sessions(self) -> None:
        for session in (self.left, self.right):
            if session is not None:
                session.release()
        self.left = None
        self.right = None

    # -- solve ------------------------------------------------------------------

    @property
    def solve_in_progress(self) -> bool:
        return self._solve_thread is not None and self._solve_thread.is_alive()

    def _start_solve(self, attempt: int) -> None:
        assert self.left is not None and self.right is not None
        self._generation += 1
        generation = self._generation
        inputs = {
            s.side: (
                [p.copy() for p in s.samples],
                s.image_size,
                s.intrinsic_matrix.copy(),
                s.distortion_coeffs.copy(),
            )
            for s in (self.left, self.right)
        }
        board = self.board
        self._set_state(Computing(attempt=attempt, error=None))
        if self.background_solve:
            self._solve_thread = threading.Thread(
                target=self._solve_worker,
                args=(generation, inputs, board),
                daemon=True,
            )
            self._solve_thread.start()
        else:
            self._solve_worker(generation, inputs, board)
            self.poll_solve()

    def _solve_worker(self, generation: int, inputs: dict, board: BoardConfig) -> None:
        results: Dict[str, CalibrationResult] = {}
        error: Optional[str] = None
        try:
            for side, (samples, image_size, matrix, coeffs) in inputs.items():
                results[side] = solve_intrinsics(
                    side, samples, board, image_size, matrix, coeffs, self.solver_cfg
                )
        except NumericalFailure as exc:
            error = str(exc)
        except Exception as exc:
            log.exception("Calibration solve crashed")
            error = f"{type(exc).__name__}: {exc}"
        with self._solve_lock:
            self._pending = _SolveOutcome(
                generation=generation,
                results=None if error else results,
                error=error,
            )

    def join_solve(self, timeout: float | None = None) -> bool:
        """Block until a background solve finishes, then apply it. Returns False on timeout."""
        thread = self._solve_thread
        if thread is not None:
            thread.join(timeout=timeout)
            if thread.is_alive():
                return False
        self.poll_solve()
        return True

    def poll_solve(self) -> bool:
        """Apply a finished solve, if one is waiting. Returns True when state changed."""
        if not isinstance(self.state, Computing):
            return False
        with self._solve_lock:
            outcome = self._pending
            self._pending = None
        if outcome is None:
            return False
        if outcome.generation != self._generation:
            log.debug("Dropping stale solve outcome")
            return False
        state = self.state
        if outcome.error is not None or outcome.results is None:
            log.warning("Solve attempt %d failed: %s", state.attempt, outcome.error)
            self._set_state(Computing(attempt=state.attempt, error=outcome.error))
            return True

        assert self.left is not None and self.right is not None
        left_result = outcome.results["left"]
        right_result = outcome.results["right"]
        self.left.apply_result(left_result)
        self.right.apply_result(right_result)
        self.preview_mode = "undistorted"
        self._set_state(Complete(left=left_result, right=right_result))
        if self.sink is not None:
            try:
                self.sink.publish(left_result, right_result, self.board)
            except Exception as exc:
                log.exception("Publishing calibration failed")
                self.fail(f"publish failed: {exc}")
        return True

    # -- preview / status ----------------------------------------------------

    def next_preview_mode(self) -> PreviewMode:
        i = PREVIEW_MODES.index(self.preview_mode)
        self.preview_mode = PREVIEW_MODES[(i + 1) % len(PREVIEW_MODES)]
        return self.preview_mode

    def previous_preview_mode(self) -> PreviewMode:
        i = PREVIEW_MODES.index(self.preview_mode)
        self.preview_mode = PREVIEW_MODES[(i - 1) % len(PREVIEW_MODES)]
        return self.preview_mode

    def session(self, side: CameraSide) -> Optional[SessionState]:
        return self.left if side == "left" else self.right

    def progress(self) -> float:
        if self.left is None or self.right is None:
            return 0.0
        target = float(self.board.target_sample_count)
        return min(self.left.accepted_count / target, self.right.accepted_count / target, 1.0)

    def status(self) -> Dict[str, Any]:
        state = self.state
        out: Dict[str, Any] = {
            "state": state.tag,
            "board": self.board.to_dict(),
            "progress": self.progress(),
            "preview_mode": self.preview_mode,
            "frames_processed": self.frames_processed,
            "solve_in_progress": self.solve_in_progress,
            "sessions": {
                s.side: s.status() for s in (self.left, self.right) if s is not None
            },
        }
        if isinstance(state, AwaitingBoardSettings):
            out["square_length_mm"] = state.square_length_mm
        if isinstance(state, Computing):
            out["attempt"] = state.attempt
            out["error"] = state.error
        if isinstance(state, Complete):
            out["results"] = {"left": state.left.to_dict(), "right": state.right.to_dict()}
        if isinstance(state, Failed):
            out["error"] = state.reason
            out["resume"] = state.resume.tag
        return out
