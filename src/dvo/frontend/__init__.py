"""Frontend components: pose algebra, camera model, frames and pyramids."""

from .camera import CameraIntrinsics, StereoCalibration
from .frame import Frame, ImageSize
from .pose import SE3
from .pyramid import Pyramid, PyramidLevel, build_pyramid

__all__ = [
    # Pose
    "SE3",
    # Camera
    "CameraIntrinsics",
    "StereoCalibration",
    # Frames
    "Frame",
    "ImageSize",
    "Pyramid",
    "PyramidLevel",
    "build_pyramid",
]
