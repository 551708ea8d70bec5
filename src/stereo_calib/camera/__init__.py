"""Stereo video sources."""

from .base import StereoSourceBase
from .mock import MockStereoSource

__all__ = ["StereoSourceBase", "MockStereoSource"]
