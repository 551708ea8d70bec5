"""Config loading and construction of workflow parts from config/default.yaml."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import yaml

from stereo_calib.calibration.gate import GateThresholds
from stereo_calib.calibration.sink import JsonResultSink
from stereo_calib.calibration.solver import SolverConfig
from stereo_calib.camera.base import StereoSourceBase
from stereo_calib.core.models import (
    BoardConfig,
    CameraIntrinsics,
    CaptureParams,
    StereoIntrinsics,
)


DEFAULT_CONFIG_PATH = Path("config/default.yaml")


def load_config(path: str | Path | None = None) -> Dict[str, Any]:
    cfg_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    if not cfg_path.exists():
        return {}
    return yaml.safe_load(cfg_path.read_text()) or {}


def board_config(cfg: Dict[str, Any]) -> BoardConfig:
    board = cfg.get("board", {}) or {}
    return BoardConfig(
        square_length_mm=float(board.get("square_length_mm", 24.0)),
        target_sample_count=int(board.get("target_sample_count", 12)),
        pattern_rows=int(board.get("rows", 6)),
        pattern_cols=int(board.get("cols", 9)),
    )


def gate_thresholds(cfg: Dict[str, Any]) -> GateThresholds:
    gate = cfg.get("gate", {}) or {}
    defaults = GateThresholds()
    return GateThresholds(
        moved_px=float(gate.get("moved_px", defaults.moved_px)),
        new_location_px=float(gate.get("new_location_px", defaults.new_location_px)),
        straight_line_px=float(gate.get("straight_line_px", defaults.straight_line_px)),
    )


def solver_config(cfg: Dict[str, Any]) -> SolverConfig:
    solver = cfg.get("solver", {}) or {}
    defaults = SolverConfig()
    return SolverConfig(
        max_iter=int(solver.get("max_iter", defaults.max_iter)),
        max_reprojection_error_px=float(solver.get("max_reprojection_error_px", defaults.max_reprojection_error_px)),
        min_matrix_determinant=float(solver.get("min_matrix_determinant", defaults.min_matrix_determinant)),
    )


def capture_params(cfg: Dict[str, Any]) -> CaptureParams:
    cam = cfg.get("camera", {}) or {}
    exposure = cam.get("exposure_us")
    gain = cam.get("analogue_gain")
    awb = cam.get("awb_enable")
    return CaptureParams(
        resolution=(int(cam.get("width", 640)), int(cam.get("height", 480))),
        fps=float(cam.get("fps", 30.0)),
        exposure_us=None if exposure is None else int(exposure),
        analogue_gain=None if gain is None else float(gain),
        awb_enable=None if awb is None else bool(awb),
    )


def default_intrinsics(cfg: Dict[str, Any]) -> StereoIntrinsics:
    """Starting calibration used when the result store holds none yet."""
    params = capture_params(cfg)
    width, height = params.resolution
    hfov = float((cfg.get("camera", {}) or {}).get("hfov_deg", 60.0))
    return StereoIntrinsics(
        left=CameraIntrinsics.default(width, height, hfov),
        right=CameraIntrinsics.default(width, height, hfov),
        source="default",
    )


def create_source(cfg: Dict[str, Any]) -> StereoSourceBase:
    cam_cfg = cfg.get("camera", {}) or {}
    cam_type = str(cam_cfg.get("type", "mock"))
    if cam_type == "mock":
        from stereo_calib.camera.mock import MockStereoSource
        return MockStereoSource(data_dir=cam_cfg.get("mock_data", "mock_data"))
    if cam_type == "opencv":
        from stereo_calib.camera.opencv_impl import OpenCVStereoSource
        return OpenCVStereoSource(
            device=cam_cfg.get("device", 0),
            right_device=cam_cfg.get("right_device"),
        )
    if cam_type == "picamera2":
        from stereo_calib.camera.picamera2_impl import Picamera2StereoSource
        return Picamera2StereoSource(
            left_index=int(cam_cfg.get("left_index", 0)),
            right_index=int(cam_cfg.get("right_index", 1)),
        )
    raise RuntimeError("camera.type must be mock, opencv or picamera2")


def create_sink(cfg: Dict[str, Any]) -> JsonResultSink:
    storage = cfg.get("storage", {}) or {}
    return JsonResultSink(
        root=str(storage.get("calibration_root", "data/calibration")),
        legacy_k3_slot=bool(storage.get("legacy_k3_slot", False)),
    )
