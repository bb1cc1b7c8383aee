"""Capability interface of anything that feeds frames to the odometry."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..frontend.camera import StereoCalibration
from ..frontend.frame import Frame, ImageSize


@runtime_checkable
class FrameSource(Protocol):
    """A sequence of rectified frames with a fixed calibration."""

    def image_size(self) -> ImageSize:
        """Return the size of every frame."""
        ...

    def calibration(self) -> StereoCalibration:
        """Return the stereo calibration (K and baseline)."""
        ...

    def next_frame(self) -> Frame | None:
        """Return the next frame, or None when the source is exhausted."""
        ...
