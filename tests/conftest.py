"""Shared fixtures: a small rectified stereo camera and synthetic scenes."""

import numpy as np
import pytest

from dvo.config import AlgorithmParameters
from dvo.frontend.camera import CameraIntrinsics, StereoCalibration
from dvo.frontend.frame import ImageSize
from dvo.frontend.pose import SE3
from dvo.io.synthetic import SyntheticSequence


@pytest.fixture
def image_size() -> ImageSize:
    return ImageSize(width=160, height=120)


@pytest.fixture
def calibration(image_size: ImageSize) -> StereoCalibration:
    """Calibration with f=200 px and a 10 cm baseline."""
    return StereoCalibration(
        intrinsics=CameraIntrinsics(
            fx=200.0,
            fy=200.0,
            cx=(image_size.width - 1) / 2.0,
            cy=(image_size.height - 1) / 2.0,
        ),
        baseline=0.1,
    )


@pytest.fixture
def params() -> AlgorithmParameters:
    """Parameters sized for 160x120 synthetic frames."""
    return AlgorithmParameters(num_levels=3, max_iterations=50)


@pytest.fixture
def make_sequence(calibration: StereoCalibration, image_size: ImageSize):
    """Factory for sequences rendered from a list of camera poses."""

    def _make(poses: list[SE3]) -> SyntheticSequence:
        return SyntheticSequence(poses, calibration=calibration, image_size=image_size)

    return _make


@pytest.fixture
def translating_sequence(make_sequence):
    """Five frames moving 1 cm along +x per frame."""
    step = np.array([0.01, 0.0, 0.0])
    return make_sequence([SE3.from_translation(i * step) for i in range(5)])
