"""Direct photometric pose estimation against a keyframe.

The optimizer aligns the keyframe template of one pyramid level with the
current frame by minimizing robustly weighted intensity residuals

    r_i = I_cur(pi(T_cur_kf @ X_i)) - I_kf(x_i)

over the pose, with an inverse-compositional Gauss-Newton scheme: the
Jacobian is the keyframe's cached one and the increment is applied as

    T_cur_kf <- T_cur_kf @ exp(delta)^-1

Steps that do not lower the cost are halved a few times before the level
is declared converged. Levels are processed coarse to fine, each seeded
with the pose of the previous level.
"""

from __future__ import annotations

from concurrent.futures import Executor
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

from ..config import AlgorithmParameters
from ..errors import NumericalNonConvergence
from ..frontend.pose import SE3
from ..frontend.pyramid import Pyramid, PyramidLevel
from .linear_system import accumulate, solve
from .robust import RobustLoss, estimate_scale
from .template import Template

if TYPE_CHECKING:
    from ..backend.keyframe import Keyframe

# RMS residual (intensity units) treated as a perfect fit
ZERO_RESIDUAL_RMS = 1e-6
MAX_STEP_HALVINGS = 4


class TerminationReason(Enum):
    """Why the iterations at a pyramid level stopped."""

    SKIPPED = "Skipped"
    ZERO_RESIDUAL = "ZeroResidual"
    INCREMENT_NORM = "IncrementNorm"
    COST_DECREASE = "CostDecrease"
    COST_INCREASE = "CostIncrease"
    MAX_ITERATIONS = "MaxIterations"
    ILL_CONDITIONED = "IllConditioned"


@dataclass
class OptimizerStatistics:
    """Outcome of the optimization at one pyramid level.

    Attributes:
        level: Pyramid level index
        num_iterations: Linearizations performed
        final_cost: Robust cost at the returned pose
        converged: False when the iteration cap was reached or the system
            could not be solved
        termination: Stopping reason
        num_points: Template size at this level
        num_valid: Points with a valid residual at the returned pose
        good_fraction: Fraction of template points that are valid and
            carry a robust weight of at least good_point_threshold
    """

    level: int
    num_iterations: int = 0
    final_cost: float = 0.0
    converged: bool = True
    termination: TerminationReason = TerminationReason.SKIPPED
    num_points: int = 0
    num_valid: int = 0
    good_fraction: float = 1.0

    @classmethod
    def skipped(cls, level: int, num_points: int = 0) -> OptimizerStatistics:
        """Statistics of a level that was not optimized."""
        return cls(level=level, num_points=num_points)


@dataclass
class WarpEvaluation:
    """Residuals of a template warped into the current frame.

    Attributes:
        indices: Indices of the valid template points
        residuals: Residuals of the valid points
        sigma: Robust scale of the residuals
    """

    indices: np.ndarray
    residuals: np.ndarray
    sigma: float = 1.0

    @property
    def num_valid(self) -> int:
        return len(self.residuals)

    @property
    def rms(self) -> float:
        if self.num_valid == 0:
            return float("inf")
        return float(np.sqrt(np.mean(self.residuals * self.residuals)))


def bilinear_sample(image: np.ndarray, u: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Sample an image at sub-pixel positions.

    Positions must satisfy 0 <= u <= w-1 and 0 <= v <= h-1.
    """
    h, w = image.shape
    u0 = np.minimum(np.floor(u).astype(np.intp), w - 2)
    v0 = np.minimum(np.floor(v).astype(np.intp), h - 2)
    a = u - u0
    b = v - v0

    top = (1.0 - a) * image[v0, u0] + a * image[v0, u0 + 1]
    bottom = (1.0 - a) * image[v0 + 1, u0] + a * image[v0 + 1, u0 + 1]
    return (1.0 - b) * top + b * bottom


def warp_template(
    template: Template,
    level: PyramidLevel,
    T_cur_kf: SE3,
    occlusion_threshold: float = 0.0,
) -> WarpEvaluation:
    """Warp template points into the current level and compute residuals.

    A point is valid when it lands in front of the camera and inside the
    image, and is not occluded. It is occluded when the current disparity
    at the warped pixel is valid and disagrees with the predicted one by
    more than occlusion_threshold (full-resolution pixels).
    """
    points = T_cur_kf.transform_points(template.points)
    pixels, in_front = level.calibration.project(points)
    u, v = pixels[:, 0], pixels[:, 1]

    with np.errstate(invalid="ignore"):
        valid = (
            in_front
            & (u >= 0.0)
            & (v >= 0.0)
            & (u <= level.width - 1)
            & (v <= level.height - 1)
        )

    if occlusion_threshold > 0 and valid.any():
        candidates = np.nonzero(valid)[0]
        cols = np.rint(u[candidates]).astype(np.intp)
        rows = np.rint(v[candidates]).astype(np.intp)
        observed = level.disparity[rows, cols].astype(np.float64)
        predicted = level.calibration.fx_baseline / points[candidates, 2]
        with np.errstate(invalid="ignore"):
            occluded = np.isfinite(observed) & (
                np.abs(observed - predicted) > occlusion_threshold / level.scale
            )
        valid[candidates[occluded]] = False

    indices = np.nonzero(valid)[0]
    warped = bilinear_sample(level.image, u[indices], v[indices])
    residuals = warped - template.intensities[indices]
    return WarpEvaluation(indices=indices, residuals=residuals)


class PoseOptimizer:
    """Coarse-to-fine robust Gauss-Newton alignment to a keyframe."""

    def __init__(
        self,
        params: AlgorithmParameters,
        executor: Executor | None = None,
    ) -> None:
        """Initialize the optimizer.

        Args:
            params: Algorithm parameters
            executor: Optional thread pool used to accumulate the normal
                equations in parallel
        """
        self._params = params
        self._loss = RobustLoss.from_parameters(params)
        self._executor = executor

    @property
    def loss(self) -> RobustLoss:
        return self._loss

    def _evaluate(self, template: Template, level: PyramidLevel, T_cur_kf: SE3) -> WarpEvaluation:
        evaluation = warp_template(
            template, level, T_cur_kf, self._params.occlusion_threshold
        )
        evaluation.sigma = estimate_scale(evaluation.residuals, self._params.min_scale)
        return evaluation

    def optimize(
        self,
        keyframe: Keyframe,
        pyramid: Pyramid,
        prior_pose: SE3,
    ) -> tuple[SE3, list[OptimizerStatistics]]:
        """Estimate the relative pose over all pyramid levels.

        Levels finer than max_test_level are not optimized and report
        SKIPPED statistics.

        Args:
            keyframe: Active keyframe
            pyramid: Pyramid of the current frame
            prior_pose: Initial guess of T_kf_cur

        Returns:
            Tuple of (T_kf_cur, statistics indexed by level)
        """
        statistics: list[OptimizerStatistics | None] = [None] * len(pyramid)
        pose = prior_pose

        for level in pyramid.coarse_to_fine():
            if level.level < self._params.max_test_level:
                statistics[level.level] = OptimizerStatistics.skipped(
                    level.level, keyframe.template(level.level).num_points
                )
                continue
            pose, statistics[level.level] = self.estimate(keyframe, level, pose)

        return pose, statistics

    def estimate(
        self,
        keyframe: Keyframe,
        level: PyramidLevel,
        prior_pose: SE3,
    ) -> tuple[SE3, OptimizerStatistics]:
        """Refine the relative pose at a single pyramid level.

        Args:
            keyframe: Active keyframe providing the cached template
            level: Current frame's pyramid level
            prior_pose: Initial guess of T_kf_cur

        Returns:
            Tuple of (refined T_kf_cur, statistics of this level)
        """
        params = self._params
        template = keyframe.template(level.level)
        stats = OptimizerStatistics(level=level.level, num_points=template.num_points)

        T = prior_pose.inverse()
        evaluation = self._evaluate(template, level, T)
        cost = self._loss.cost(evaluation.residuals, evaluation.sigma)
        termination = TerminationReason.MAX_ITERATIONS

        for iteration in range(1, params.max_iterations + 1):
            stats.num_iterations = iteration

            if evaluation.num_valid < params.min_valid_points:
                termination = TerminationReason.ILL_CONDITIONED
                break
            if evaluation.rms < ZERO_RESIDUAL_RMS:
                termination = TerminationReason.ZERO_RESIDUAL
                break

            weights = self._loss.weights(evaluation.residuals, evaluation.sigma)
            system = accumulate(
                template.jacobians[evaluation.indices],
                evaluation.residuals,
                weights,
                chunk_size=params.accumulation_chunk_size,
                executor=self._executor,
            )
            try:
                delta = solve(system, params.damping, params.max_condition_number)
            except NumericalNonConvergence:
                termination = TerminationReason.ILL_CONDITIONED
                break

            step = delta
            candidate = None
            for _ in range(MAX_STEP_HALVINGS + 1):
                T_new = T @ SE3.exp(step).inverse()
                evaluation_new = self._evaluate(template, level, T_new)
                if evaluation_new.num_valid >= params.min_valid_points:
                    # Compare both costs under the same scale
                    cost_new = self._loss.cost(evaluation_new.residuals, evaluation.sigma)
                    if cost_new <= cost:
                        candidate = (T_new, evaluation_new, cost_new)
                        break
                step = 0.5 * step

            if candidate is None:
                termination = TerminationReason.COST_INCREASE
                break

            T, evaluation, cost_new = candidate
            decrease = (cost - cost_new) / cost if cost > 0 else 0.0
            cost = self._loss.cost(evaluation.residuals, evaluation.sigma)

            if np.linalg.norm(step) < params.parameter_tolerance:
                termination = TerminationReason.INCREMENT_NORM
                break
            if decrease < params.function_tolerance:
                termination = TerminationReason.COST_DECREASE
                break

        stats.termination = termination
        stats.final_cost = cost
        stats.num_valid = evaluation.num_valid
        stats.converged = (
            termination
            not in (TerminationReason.MAX_ITERATIONS, TerminationReason.ILL_CONDITIONED)
            and stats.num_iterations < params.max_iterations
        )
        if template.num_points > 0:
            weights = self._loss.weights(evaluation.residuals, evaluation.sigma)
            num_good = int(np.count_nonzero(weights >= params.good_point_threshold))
            stats.good_fraction = num_good / template.num_points
        else:
            stats.good_fraction = 0.0

        return T.inverse(), stats
