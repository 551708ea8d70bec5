"""Entry point for stereo_calib."""

from __future__ import annotations

import logging
import sys

import uvicorn

from stereo_calib.calibration.workflow import CaptureStateMachine
from stereo_calib.cli import main as cli_main
from stereo_calib.core import config as config_mod
from stereo_calib.core.controller import CaptureController
from stereo_calib.core.logging import setup_logging
from stereo_calib.web.preview import PreviewBroadcaster
from stereo_calib.web.server import CalibrationServer


def main() -> None:
    if len(sys.argv) > 1:
        raise SystemExit(cli_main())
    cfg = config_mod.load_config()
    log_cfg = cfg.get("logging", {}) or {}
    log = setup_logging(
        log_dir=str(log_cfg.get("dir", "logs")),
        level=getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO),
    )

    source = config_mod.create_source(cfg)
    sink = config_mod.create_sink(cfg)
    machine = CaptureStateMachine(
        default_intrinsics=config_mod.default_intrinsics(cfg),
        board=config_mod.board_config(cfg),
        thresholds=config_mod.gate_thresholds(cfg),
        solver_cfg=config_mod.solver_config(cfg),
        sink=sink,
        background_solve=bool((cfg.get("capture", {}) or {}).get("background_solve", True)),
    )
    controller = CaptureController(
        source=source,
        machine=machine,
        preview=PreviewBroadcaster(),
        config=cfg,
    )
    controller.start_loop(config_mod.capture_params(cfg))

    server = CalibrationServer(controller=controller, sink=sink, config=cfg)
    host = cfg.get("web", {}).get("host", "0.0.0.0")
    port = int(cfg.get("web", {}).get("port", 8000))

    log.info("Starting server on %s:%s", host, port)
    try:
        uvicorn.run(server.app, host=host, port=port, log_level="info")
    finally:
        controller.stop_loop()
        machine.close()


if __name__ == "__main__":
    main()
