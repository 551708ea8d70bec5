"""Capture controller: polls the stereo source and drives the calibration workflow."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from stereo_calib.calibration.workflow import CaptureStateMachine, Capturing
from stereo_calib.camera.base import StereoSourceBase
from stereo_calib.core.models import SIDES, CaptureParams
from stereo_calib.overlays.generate import draw_status_text, render_session_overlay
from stereo_calib.web.preview import PreviewBroadcaster


log = logging.getLogger(__name__)


class CaptureController:
    """
    Owns the tick loop. All access to the state machine, from the loop thread
    and from operator commands, goes through one lock.
    """

    def __init__(
        self,
        source: StereoSourceBase,
        machine: CaptureStateMachine,
        preview: Optional[PreviewBroadcaster] = None,
        config: Optional[Dict[str, Any]] = None,
        auto_commit: bool = False,
    ) -> None:
        self.source = source
        self.machine = machine
        self.preview = preview
        self.config = config or {}
        self.auto_commit = auto_commit

        capture_cfg = self.config.get("capture", {}) or {}
        self.max_missed_frames = int(capture_cfg.get("max_missed_frames", 90))
        self.tick_interval_s = 1.0 / max(float(capture_cfg.get("tick_fps", 30.0)), 1.0)
        self.preview_interval_s = 1.0 / max(float(capture_cfg.get("preview_fps", 10.0)), 0.1)
        self._capture_exposure_us = capture_cfg.get("exposure_us")
        self._capture_gain = capture_cfg.get("analogue_gain")

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._source_started = False
        self._missed_frames = 0
        self._last_preview = 0.0
        self._last_error: Optional[str] = None

    # -- loop ---------------------------------------------------------------------

    def start_source(self, params: CaptureParams) -> None:
        if not self._source_started:
            log.info("Starting stereo source: %s", params.to_dict())
            self.source.start(params)
            self._source_started = True

    def start_loop(self, params: CaptureParams) -> None:
        self.start_source(params)
        if self._worker and self._worker.is_alive():
            return
        self._stop_event.clear()
        self._worker = threading.Thread(target=self._loop_worker, daemon=True)
        self._worker.start()

    def stop_loop(self) -> None:
        self._stop_event.set()
        if self._worker and self._worker.is_alive():
            self._worker.join(timeout=2.0)
        self._worker = None
        if self._source_started:
            try:
                self.source.stop()
            finally:
                self._source_started = False

    def _loop_worker(self) -> None:
        while not self._stop_event.is_set():
            t0 = time.monotonic()
            try:
                self.step()
            except Exception as exc:
                log.exception("Capture tick failed")
                with self._lock:
                    self._last_error = str(exc)
                    self.machine.fail(f"tick error: {exc}")
            elapsed = time.monotonic() - t0
            time.sleep(max(0.0, self.tick_interval_s - elapsed))

    def step(self) -> bool:
        """Poll one frame pair and run one workflow tick. Returns True if frames were ingested."""
        frames = None
        try:
            frames = self.source.read_pair()
        except RuntimeError as exc:
            log.warning("Video source read failed: %s", exc)

        with self._lock:
            if frames is None:
                self._missed_frames += 1
                self.machine.tick(None)
                if self._missed_frames == self.max_missed_frames:
                    self.machine.fail(f"video source delivered no frames for {self._missed_frames} ticks")
                return False
            self._missed_frames = 0
            ingested = self.machine.tick(frames)
            if ingested and self.auto_commit:
                self._auto_commit()
            self._publish_preview()
        return ingested

    def _auto_commit(self) -> None:
        if not isinstance(self.machine.state, Capturing):
            return
        # Commit only when every camera still collecting has a usable view.
        waiting = [s for s in (self.machine.session(side) for side in SIDES) if s is not None and not s.is_full]
        if waiting and all(s.current_valid for s in waiting):
            self.machine.commit()

    def _publish_preview(self) -> None:
        if self.preview is None:
            return
        now = time.monotonic()
        if now - self._last_preview < self.preview_interval_s:
            return
        self._last_preview = now
        capturing = isinstance(self.machine.state, Capturing)
        for side in SIDES:
            session = self.machine.session(side)
            if session is None:
                continue
            base = session.preview(self.machine.preview_mode)
            if base is None:
                continue
            frame = render_session_overlay(base, session, capturing)
            draw_status_text(frame, f"{side} {session.accepted_count}/{self.machine.board.target_sample_count}")
            self.preview.update(
                side,
                frame,
                {
                    "state": self.machine.state.tag,
                    "mode": self.machine.preview_mode,
                    "accepted": session.accepted_count,
                    "valid": bool(session.current_valid),
                },
            )

    # -- operator commands ------------------------------------------------------

    def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            return fn(*args)

    def start_workflow(self) -> bool:
        return self._run(self.machine.start)

    def acknowledge_warning(self) -> bool:
        return self._run(self.machine.acknowledge_warning)

    def set_square_length(self, square_length_mm: float) -> bool:
        return self._run(self.machine.set_square_length, square_length_mm)

    def confirm_board_settings(self) -> bool:
        ok = self._run(self.machine.confirm_board_settings)
        if ok and self._capture_exposure_us is not None and self._capture_gain is not None:
            # Temporary boost so the board is visible; not persisted anywhere.
            self.set_camera_controls(int(self._capture_exposure_us), float(self._capture_gain))
        return ok

    def commit(self) -> bool:
        return self._run(self.machine.commit)

    def restart(self) -> bool:
        return self._run(self.machine.restart)

    def retry_solve(self) -> bool:
        return self._run(self.machine.retry_solve)

    def cancel(self) -> bool:
        with self._lock:
            ok = self.machine.cancel()
            if ok and self.preview is not None:
                self.preview.clear()
            return ok

    def recover(self) -> bool:
        with self._lock:
            self._missed_frames = 0
            return self.machine.recover()

    def next_preview_mode(self) -> str:
        return self._run(self.machine.next_preview_mode)

    def previous_preview_mode(self) -> str:
        return self._run(self.machine.previous_preview_mode)

    def set_camera_controls(self, exposure_us: int, analogue_gain: float) -> bool:
        try:
            self.source.set_manual_controls(int(exposure_us), float(analogue_gain), awb_enable=False)
        except RuntimeError as exc:
            log.warning("Camera controls not applied: %s", exc)
            return False
        return True

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            status = self.machine.status()
            status.update({
                "loop_running": bool(self._worker is not None and self._worker.is_alive()),
                "missed_frames": self._missed_frames,
                "last_error": self._last_error,
                "applied_controls": self.source.get_applied_controls(),
            })
            return status
