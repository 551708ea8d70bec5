"""Checkerboard capture, gating and intrinsics calibration for a two-camera rig."""

from .checkerboard import detect_pattern
from .gate import GateThresholds, GateVerdict
from .session import FrameBuffers, SessionState
from .solver import NotEnoughSamples, NumericalFailure, SolverConfig, solve_intrinsics
from .sink import JsonResultSink, MemoryResultSink, ResultSink
from .undistort import DistortionMap, build_distortion_map
from .workflow import CaptureStateMachine, both_sessions_full

__all__ = [
    "detect_pattern",
    "GateThresholds",
    "GateVerdict",
    "FrameBuffers",
    "SessionState",
    "NotEnoughSamples",
    "NumericalFailure",
    "SolverConfig",
    "solve_intrinsics",
    "JsonResultSink",
    "MemoryResultSink",
    "ResultSink",
    "DistortionMap",
    "build_distortion_map",
    "CaptureStateMachine",
    "both_sessions_full",
]
