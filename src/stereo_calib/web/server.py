"""FastAPI server exposing the guided calibration workflow."""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.responses import JSONResponse, Response

from stereo_calib.calibration.sink import ResultSink
from stereo_calib.core.controller import CaptureController
from stereo_calib.core.models import SIDES


class CalibrationServer:
    """FastAPI wrapper with REST endpoints for workflow commands and previews."""

    def __init__(self, controller: CaptureController, sink: ResultSink | None, config: Dict[str, Any]) -> None:
        self.controller = controller
        self.sink = sink
        self.config = config
        self.app = FastAPI()
        self._configure_routes()

    def _command_response(self, ok: bool) -> Dict[str, Any]:
        status = self.controller.get_status()
        return {"ok": bool(ok), "state": status["state"]}

    def _configure_routes(self) -> None:
        log = logging.getLogger("stereo_calib")

        @self.app.get("/api/status")
        async def get_status():
            return self.controller.get_status()

        @self.app.post("/api/workflow/start")
        async def workflow_start():
            return self._command_response(self.controller.start_workflow())

        @self.app.post("/api/workflow/acknowledge")
        async def workflow_acknowledge():
            return self._command_response(self.controller.acknowledge_warning())

        @self.app.post("/api/workflow/board")
        async def workflow_board(payload: Dict[str, Any]):
            try:
                square = float(payload["square_length_mm"])
            except (KeyError, TypeError, ValueError):
                return JSONResponse({"ok": False, "error": "square_length_mm is required"}, status_code=400)
            ok = self.controller.set_square_length(square)
            resp = self._command_response(ok)
            resp["square_length_mm"] = self.controller.get_status().get("square_length_mm")
            return resp

        @self.app.post("/api/workflow/confirm")
        async def workflow_confirm():
            return self._command_response(self.controller.confirm_board_settings())

        @self.app.post("/api/workflow/commit")
        async def workflow_commit():
            return self._command_response(self.controller.commit())

        @self.app.post("/api/workflow/restart")
        async def workflow_restart():
            return self._command_response(self.controller.restart())

        @self.app.post("/api/workflow/retry")
        async def workflow_retry():
            return self._command_response(self.controller.retry_solve())

        @self.app.post("/api/workflow/cancel")
        async def workflow_cancel():
            return self._command_response(self.controller.cancel())

        @self.app.post("/api/workflow/recover")
        async def workflow_recover():
            return self._command_response(self.controller.recover())

        @self.app.post("/api/preview/mode")
        async def preview_mode(payload: Dict[str, Any] | None = None):
            direction = str((payload or {}).get("direction", "next"))
            if direction == "previous":
                mode = self.controller.previous_preview_mode()
            else:
                mode = self.controller.next_preview_mode()
            return {"ok": True, "mode": mode}

        @self.app.post("/api/camera/controls")
        async def camera_controls(payload: Dict[str, Any]):
            try:
                exposure = int(payload["exposure_us"])
                gain = float(payload["analogue_gain"])
            except (KeyError, TypeError, ValueError):
                return JSONResponse(
                    {"ok": False, "error": "exposure_us and analogue_gain are required"},
                    status_code=400,
                )
            ok = self.controller.set_camera_controls(exposure, gain)
            return {"ok": ok, "applied_controls": self.controller.source.get_applied_controls()}

        @self.app.get("/api/preview/{side}")
        async def preview_image(side: str):
            if side not in SIDES:
                return JSONResponse({"ok": False, "error": f"unknown camera: {side}"}, status_code=404)
            if self.controller.preview is None:
                return JSONResponse({"ok": False, "error": "preview disabled"}, status_code=404)
            latest = self.controller.preview.get_latest(side)
            if latest is None:
                return JSONResponse({"ok": False, "error": "no preview yet"}, status_code=404)
            data, meta = latest
            headers = {f"X-Preview-{k.capitalize()}": str(v) for k, v in meta.items()}
            return Response(content=data, media_type="image/jpeg", headers=headers)

        @self.app.get("/api/calibration/active")
        async def active_calibration():
            if self.sink is None:
                return {"exists": False}
            try:
                active = self.sink.load_active()
            except (OSError, ValueError, KeyError) as exc:
                log.warning("Could not read active calibration: %s", exc)
                return JSONResponse({"exists": False, "error": str(exc)}, status_code=500)
            if active is None:
                return {"exists": False}
            return {
                "exists": True,
                "source": active.source,
                "left": active.left.to_dict(),
                "right": active.right.to_dict(),
            }
