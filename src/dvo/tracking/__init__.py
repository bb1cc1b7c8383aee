"""Direct photometric pose tracking."""

from .pose_optimizer import (
    OptimizerStatistics,
    PoseOptimizer,
    TerminationReason,
    warp_template,
)
from .robust import RobustLoss, estimate_scale
from .template import Template, build_template

__all__ = [
    "PoseOptimizer",
    "OptimizerStatistics",
    "TerminationReason",
    "warp_template",
    "RobustLoss",
    "estimate_scale",
    "Template",
    "build_template",
]
