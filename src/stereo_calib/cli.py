"""CLI commands for headless capture and using a stored calibration."""

from __future__ import annotations

import argparse
import json
import logging
import time
from pathlib import Path

import numpy as np
from PIL import Image

from stereo_calib.calibration.sink import JsonResultSink
from stereo_calib.calibration.undistort import build_distortion_map, undistort_image
from stereo_calib.calibration.workflow import CaptureStateMachine, Complete, Failed, OverwriteWarning
from stereo_calib.camera.mock import MockStereoSource
from stereo_calib.core import config as config_mod
from stereo_calib.core.controller import CaptureController
from stereo_calib.core.logging import setup_logging


def _sink_from_args(args, cfg: dict) -> JsonResultSink:
    root = getattr(args, "calibration_root", None)
    if root:
        storage = dict(cfg.get("storage", {}) or {})
        storage["calibration_root"] = root
        cfg = {**cfg, "storage": storage}
    return config_mod.create_sink(cfg)


def cmd_run(args) -> int:
    cfg = config_mod.load_config(args.config)
    log = setup_logging(str((cfg.get("logging", {}) or {}).get("dir", "logs")))
    board = config_mod.board_config(cfg)
    sink = _sink_from_args(args, cfg)
    if args.mock_dir:
        source = MockStereoSource(data_dir=args.mock_dir, loop=False)
    else:
        source = config_mod.create_source(cfg)
    machine = CaptureStateMachine(
        default_intrinsics=config_mod.default_intrinsics(cfg),
        board=board,
        thresholds=config_mod.gate_thresholds(cfg),
        solver_cfg=config_mod.solver_config(cfg),
        sink=sink,
        background_solve=bool((cfg.get("capture", {}) or {}).get("background_solve", True)),
    )
    controller = CaptureController(source, machine, preview=None, config=cfg, auto_commit=True)

    controller.start_workflow()
    if isinstance(machine.state, OverwriteWarning):
        if not args.overwrite:
            print("An active calibration already exists; pass --overwrite to replace it.")
            return 2
        controller.acknowledge_warning()
    if args.square_mm is not None:
        controller.set_square_length(args.square_mm)
    controller.confirm_board_settings()

    controller.start_source(config_mod.capture_params(cfg))
    try:
        ticks = 0
        while args.max_ticks <= 0 or ticks < args.max_ticks:
            controller.step()
            ticks += 1
            state = machine.state
            if isinstance(state, (Complete, Failed)):
                break
            if machine.solve_in_progress:
                time.sleep(0.01)
        else:
            log.warning("Stopped after %d ticks without completing", ticks)
        machine.join_solve(timeout=60.0)
    finally:
        controller.stop_loop()

    status = machine.status()
    print(json.dumps({k: status[k] for k in ("state", "progress", "sessions") if k in status}, indent=2))
    if isinstance(machine.state, Complete):
        print(json.dumps(status["results"], indent=2))
        return 0
    return 1


def cmd_show(args) -> int:
    cfg = config_mod.load_config(args.config)
    sink = _sink_from_args(args, cfg)
    active = sink.load_active()
    if active is None:
        print("No active calibration.")
        return 1
    print(json.dumps({"source": active.source, "left": active.left.to_dict(), "right": active.right.to_dict()}, indent=2))
    return 0


def cmd_undistort(args) -> int:
    cfg = config_mod.load_config(args.config)
    sink = _sink_from_args(args, cfg)
    active = sink.load_active()
    if active is None:
        print("No active calibration.")
        return 1
    intr = active.get(args.side)
    image = np.array(Image.open(args.image).convert("RGB"), dtype=np.uint8)
    h, w = image.shape[:2]
    if (w, h) != intr.image_size:
        logging.getLogger("stereo_calib").warning(
            "Image size %dx%d differs from calibrated size %dx%d", w, h, intr.width, intr.height
        )
    dmap = build_distortion_map(intr.camera_matrix, intr.dist_coeffs, (w, h))
    out = undistort_image(image, dmap)
    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(out).save(out_path)
    print(f"Saved {out_path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stereo_calib")
    parser.add_argument("--config", type=str, default=None)
    parser.add_argument("--calibration-root", type=str, default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run")
    run.add_argument("--square-mm", type=float, default=None)
    run.add_argument("--mock-dir", type=str, default=None)
    run.add_argument("--max-ticks", type=int, default=0)
    run.add_argument("--overwrite", action="store_true")
    run.set_defaults(func=cmd_run)

    show = sub.add_parser("show")
    show.set_defaults(func=cmd_show)

    undistort = sub.add_parser("undistort")
    undistort.add_argument("--image", required=True)
    undistort.add_argument("--side", choices=["left", "right"], default="left")
    undistort.add_argument("--out", required=True)
    undistort.set_defaults(func=cmd_undistort)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))
