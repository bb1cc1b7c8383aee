"""Backend components: keyframe management and trajectory accumulation."""

from .keyframe import Keyframe, KeyframeSelector, KeyframingReason
from .trajectory import Trajectory, TrajectoryAccumulator

__all__ = [
    "Keyframe",
    "KeyframeSelector",
    "KeyframingReason",
    "Trajectory",
    "TrajectoryAccumulator",
]
