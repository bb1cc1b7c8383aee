"""Python DVO - direct stereo visual odometry with keyframing."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .config import AlgorithmParameters, LossFunction
from .errors import (
    ConfigurationError,
    DVOError,
    InvalidInputError,
    NumericalNonConvergence,
)
from .frontend import (
    SE3,
    CameraIntrinsics,
    Frame,
    ImageSize,
    Pyramid,
    StereoCalibration,
    build_pyramid,
)
from .tracking import OptimizerStatistics, PoseOptimizer, TerminationReason
from .backend import (
    Keyframe,
    KeyframeSelector,
    KeyframingReason,
    Trajectory,
    TrajectoryAccumulator,
)
from .io import DatasetReader, FrameSource, SyntheticSequence, load_calibration
from .odometry import FrameTiming, OdometryState, Result, VisualOdometry

__all__ = [
    "__version__",
    # Configuration / errors
    "AlgorithmParameters",
    "LossFunction",
    "DVOError",
    "InvalidInputError",
    "ConfigurationError",
    "NumericalNonConvergence",
    # Odometry
    "VisualOdometry",
    "Result",
    "FrameTiming",
    "OdometryState",
    # Pose / camera / frames
    "SE3",
    "CameraIntrinsics",
    "StereoCalibration",
    "Frame",
    "ImageSize",
    "Pyramid",
    "build_pyramid",
    # Tracking
    "PoseOptimizer",
    "OptimizerStatistics",
    "TerminationReason",
    # Keyframing / trajectory
    "Keyframe",
    "KeyframeSelector",
    "KeyframingReason",
    "Trajectory",
    "TrajectoryAccumulator",
    # I/O
    "DatasetReader",
    "FrameSource",
    "SyntheticSequence",
    "load_calibration",
]
