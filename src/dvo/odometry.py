"""Frame-to-keyframe direct stereo visual odometry."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from .backend.keyframe import Keyframe, KeyframeSelector, KeyframingReason
from .backend.trajectory import Trajectory, TrajectoryAccumulator
from .config import AlgorithmParameters
from .errors import InvalidInputError
from .frontend.camera import StereoCalibration
from .frontend.frame import Frame, ImageSize
from .frontend.pose import SE3
from .frontend.pyramid import build_pyramid
from .tracking.pose_optimizer import OptimizerStatistics, PoseOptimizer


class OdometryState(Enum):
    """State of the odometry controller."""

    UNINITIALIZED = "UNINITIALIZED"
    TRACKING = "TRACKING"


@dataclass
class FrameTiming:
    """Timing breakdown for a single frame."""

    pyramid_ms: float = 0.0
    optimization_ms: float = 0.0
    keyframe_ms: float = 0.0
    total_ms: float = 0.0


@dataclass
class Result:
    """Output of visual odometry for a single frame.

    Attributes:
        frame_id: Sequential frame identifier
        pose: Pose relative to the keyframe the frame was tracked against
        world_pose: Pose in the world frame
        optimizer_statistics: Statistics indexed by pyramid level
        keyframing_reason: Keyframing decision for the frame
        max_iterations_reached: True if the iteration cap was hit at
            max_test_level
        timing: Processing time breakdown
    """

    frame_id: int
    pose: SE3
    world_pose: SE3
    optimizer_statistics: list[OptimizerStatistics]
    keyframing_reason: KeyframingReason
    max_iterations_reached: bool = False
    timing: FrameTiming = field(default_factory=FrameTiming)

    @property
    def is_keyframe(self) -> bool:
        """Return True if this frame became the new keyframe."""
        return self.keyframing_reason.is_keyframe

    @property
    def position(self) -> np.ndarray:
        """Return camera position in world frame."""
        return self.world_pose.position

    def num_iterations(self, level: int) -> int:
        """Return the iteration count at a pyramid level."""
        return self.optimizer_statistics[level].num_iterations


class VisualOdometry:
    """Direct stereo visual odometry with keyframing.

    Orchestrates the per-frame pipeline:
    1. Pyramid construction for the incoming frame
    2. Coarse-to-fine pose optimization against the active keyframe
    3. Keyframe selection (may promote the frame)
    4. Trajectory accumulation

    The first frame becomes the keyframe with the identity pose. A single
    instance must not process two frames concurrently; use one instance per
    stream.
    """

    def __init__(
        self,
        calibration: StereoCalibration,
        image_size: ImageSize,
        params: AlgorithmParameters | None = None,
        logger: logging.Logger | None = None,
        enable_timing: bool = True,
    ) -> None:
        """Initialize visual odometry pipeline.

        Args:
            calibration: Rectified stereo calibration (K and baseline)
            image_size: Size every frame must have
            params: Algorithm parameters (default: AlgorithmParameters())
            logger: Sink for info and warning messages
            enable_timing: If True, fill the per-frame timing breakdown
        """
        self._calibration = calibration
        self._image_size = ImageSize(*image_size)
        self._params = params if params is not None else AlgorithmParameters()
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._enable_timing = enable_timing

        # Validates the pyramid depth against the image size up front
        probe = np.zeros(self._image_size.shape, dtype=np.float32)
        build_pyramid(probe, probe, self._params.num_levels, calibration)

        self._executor: ThreadPoolExecutor | None = None
        if self._params.num_threads > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=self._params.num_threads,
                thread_name_prefix="dvo-accumulate",
            )

        self._optimizer = PoseOptimizer(self._params, executor=self._executor)
        self._keyframe_selector = KeyframeSelector(self._params)
        self._accumulator = TrajectoryAccumulator()

        # State
        self._state = OdometryState.UNINITIALIZED
        self._frame_id: int = 0
        self._prior_pose = SE3.identity()

        self._logger.info(
            "VisualOdometry initialized: %dx%d, %d levels, max %d iterations, loss=%s",
            self._image_size.width,
            self._image_size.height,
            self._params.num_levels,
            self._params.max_iterations,
            self._params.loss.value,
        )

    def add_frame(
        self, image: np.ndarray | Frame, disparity: np.ndarray | None = None
    ) -> Result:
        """Process one frame.

        Args:
            image: Intensity image (2D array or flat row-major buffer), or a
                Frame (then disparity must be omitted)
            disparity: Disparity map matching the image

        Returns:
            Result with the relative and world pose, per-level statistics
            and the keyframing decision

        Raises:
            InvalidInputError: If the frame does not match the configured
                image size. The engine state is left unchanged.
        """
        frame = self._to_frame(image, disparity)

        timing = FrameTiming()
        t_start = time.perf_counter()

        t0 = time.perf_counter()
        pyramid = build_pyramid(
            frame.image, frame.disparity, self._params.num_levels, self._calibration
        )
        if self._enable_timing:
            timing.pyramid_ms = (time.perf_counter() - t0) * 1000

        frame_id = self._frame_id

        if self._state is OdometryState.UNINITIALIZED:
            relative_pose = SE3.identity()
            statistics = [
                OptimizerStatistics.skipped(level.level) for level in pyramid
            ]
        else:
            t0 = time.perf_counter()
            relative_pose, statistics = self._optimizer.optimize(
                self._keyframe_selector.active_keyframe, pyramid, self._prior_pose
            )
            if self._enable_timing:
                timing.optimization_ms = (time.perf_counter() - t0) * 1000

        t0 = time.perf_counter()
        reason = self._keyframe_selector.select(
            relative_pose, statistics, frame_id, pyramid
        )
        if self._enable_timing:
            timing.keyframe_ms = (time.perf_counter() - t0) * 1000

        world_pose = self._accumulator.append(relative_pose, reason)

        # Next frame starts from the last relative pose, or from the new keyframe
        self._prior_pose = SE3.identity() if reason.is_keyframe else relative_pose
        self._state = OdometryState.TRACKING
        self._frame_id += 1

        max_iterations_reached = (
            statistics[self._params.max_test_level].num_iterations
            >= self._params.max_iterations
        )
        if max_iterations_reached:
            self._logger.warning("max iterations reached at frame %d", frame_id)

        if reason.is_keyframe:
            self._logger.debug("Keyframe %d created: %s", frame_id, reason.value)

        if self._enable_timing:
            timing.total_ms = (time.perf_counter() - t_start) * 1000

        return Result(
            frame_id=frame_id,
            pose=relative_pose,
            world_pose=world_pose,
            optimizer_statistics=statistics,
            keyframing_reason=reason,
            max_iterations_reached=max_iterations_reached,
            timing=timing,
        )

    def _to_frame(self, image: np.ndarray | Frame, disparity: np.ndarray | None) -> Frame:
        """Validate the input against the configured image size."""
        if isinstance(image, Frame):
            if disparity is not None:
                raise InvalidInputError("Pass either a Frame or image and disparity")
            if image.size != self._image_size:
                raise InvalidInputError(
                    f"Frame is {image.size.width}x{image.size.height}, expected "
                    f"{self._image_size.width}x{self._image_size.height}"
                )
            return image

        if disparity is None:
            raise InvalidInputError("A disparity map is required")
        return Frame.from_buffers(image, disparity, self._image_size)

    def get_trajectory(self) -> list[SE3]:
        """Return all estimated world poses."""
        return self._accumulator.trajectory.to_list()

    def get_trajectory_positions(self) -> np.ndarray:
        """Return camera positions as array."""
        return self._accumulator.trajectory.positions()

    @property
    def trajectory(self) -> Trajectory:
        return self._accumulator.trajectory

    @property
    def active_keyframe(self) -> Keyframe | None:
        return self._keyframe_selector.active_keyframe

    @property
    def keyframe_pose(self) -> SE3:
        """Return the world pose of the active keyframe."""
        return self._accumulator.keyframe_pose

    @property
    def state(self) -> OdometryState:
        return self._state

    @property
    def params(self) -> AlgorithmParameters:
        return self._params

    @property
    def image_size(self) -> ImageSize:
        return self._image_size

    @property
    def num_frames(self) -> int:
        return self._frame_id

    @property
    def num_keyframes(self) -> int:
        return self._keyframe_selector.num_keyframes

    @property
    def current_pose(self) -> SE3 | None:
        return self._accumulator.trajectory.last

    def reset(self) -> None:
        """Reset VO to initial state."""
        self._keyframe_selector.reset()
        self._accumulator.reset()
        self._state = OdometryState.UNINITIALIZED
        self._frame_id = 0
        self._prior_pose = SE3.identity()

    def close(self) -> None:
        """Shut down the accumulation thread pool, if any.

        Frames added after closing are accumulated serially.
        """
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
            self._optimizer = PoseOptimizer(self._params, executor=None)

    def __enter__(self) -> VisualOdometry:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
