"""Keyframe data structure and selection logic.

A keyframe is the reference every incoming frame is aligned against. It
is replaced (never mutated) once tracking against it drifts too far in
translation or rotation, or its tracking quality degrades.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

from ..config import AlgorithmParameters
from ..tracking.template import Template, build_template

if TYPE_CHECKING:
    from ..frontend.pose import SE3
    from ..frontend.pyramid import Pyramid
    from ..tracking.pose_optimizer import OptimizerStatistics


class KeyframingReason(Enum):
    """Why the keyframe was (or was not) replaced for a frame.

    Exactly one reason applies per frame. Reasons other than
    KEEP_OLD_KEYFRAME promote the frame to the new keyframe.
    """

    KEEP_OLD_KEYFRAME = "KeepOldKeyframe"
    FIRST_FRAME = "FirstFrame"
    MAX_TRANSLATION = "ForceKeyframe_MaxTranslation"
    MAX_ROTATION = "ForceKeyframe_MaxRotation"
    LOW_TRACKING_QUALITY = "ForceKeyframe_LowTrackingQuality"
    MAX_ITERATIONS_AT_FINEST_LEVEL = "ForceKeyframe_MaxIterationsAtFinestLevel"

    @property
    def is_keyframe(self) -> bool:
        """Return True if this reason promotes the frame to keyframe."""
        return self is not KeyframingReason.KEEP_OLD_KEYFRAME

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, eq=False)
class Keyframe:
    """Reference frame for direct alignment.

    Attributes:
        id: Frame id of the frame that was promoted
        pyramid: Pyramid built from the frame
        templates: Cached template of every pyramid level (finest first)
    """

    id: int
    pyramid: Pyramid
    templates: tuple[Template, ...]

    @classmethod
    def from_pyramid(
        cls, frame_id: int, pyramid: Pyramid, params: AlgorithmParameters
    ) -> Keyframe:
        """Create a keyframe and build its per-level templates.

        Args:
            frame_id: Id of the promoted frame
            pyramid: The frame's pyramid
            params: Algorithm parameters (template selection)

        Returns:
            New Keyframe instance
        """
        templates = tuple(build_template(level, params) for level in pyramid)
        return cls(id=frame_id, pyramid=pyramid, templates=templates)

    def template(self, level: int) -> Template:
        """Return the template of a pyramid level."""
        return self.templates[level]

    @property
    def num_levels(self) -> int:
        return len(self.templates)

    @property
    def num_points(self) -> int:
        """Return the template size at full resolution."""
        return self.templates[0].num_points


class KeyframeSelector:
    """Decides when a new keyframe is needed and owns the active keyframe.

    Reasons are evaluated in a fixed priority order:
    1. No keyframe yet (first frame)
    2. Translation from the keyframe above max_translation
    3. Rotation from the keyframe above max_rotation
    4. Good-point fraction at the finest optimized level below
       min_tracking_quality
    5. Iteration cap hit at the finest optimized level
    """

    def __init__(self, params: AlgorithmParameters) -> None:
        """Initialize keyframe selector.

        Args:
            params: Algorithm parameters with the keyframing thresholds
        """
        self._params = params
        self._max_rotation_rad = np.deg2rad(params.max_rotation)
        self._active: Keyframe | None = None
        self._num_keyframes = 0

    def decide(
        self,
        final_pose: SE3,
        statistics: list[OptimizerStatistics],
    ) -> KeyframingReason:
        """Determine whether the current frame should become the keyframe.

        Args:
            final_pose: Relative pose T_kf_cur after optimization
            statistics: Optimizer statistics indexed by pyramid level

        Returns:
            The single keyframing reason that applies
        """
        if self._active is None:
            return KeyframingReason.FIRST_FRAME

        if final_pose.translation_norm > self._params.max_translation:
            return KeyframingReason.MAX_TRANSLATION

        if final_pose.rotation_angle > self._max_rotation_rad:
            return KeyframingReason.MAX_ROTATION

        finest = statistics[self._params.max_test_level]
        if finest.good_fraction < self._params.min_tracking_quality:
            return KeyframingReason.LOW_TRACKING_QUALITY

        if (
            self._params.keyframe_on_max_iterations
            and finest.num_iterations >= self._params.max_iterations
        ):
            return KeyframingReason.MAX_ITERATIONS_AT_FINEST_LEVEL

        return KeyframingReason.KEEP_OLD_KEYFRAME

    def select(
        self,
        final_pose: SE3,
        statistics: list[OptimizerStatistics],
        frame_id: int,
        pyramid: Pyramid,
    ) -> KeyframingReason:
        """Decide and, if required, promote the frame to the new keyframe.

        Args:
            final_pose: Relative pose T_kf_cur after optimization
            statistics: Optimizer statistics indexed by pyramid level
            frame_id: Id of the current frame
            pyramid: Pyramid of the current frame

        Returns:
            The keyframing reason for this frame
        """
        reason = self.decide(final_pose, statistics)
        if reason.is_keyframe:
            self._active = Keyframe.from_pyramid(frame_id, pyramid, self._params)
            self._num_keyframes += 1
        return reason

    def reset(self) -> None:
        """Drop the active keyframe."""
        self._active = None
        self._num_keyframes = 0

    @property
    def active_keyframe(self) -> Keyframe | None:
        """Return the active keyframe."""
        return self._active

    @property
    def num_keyframes(self) -> int:
        """Return number of keyframes created so far."""
        return self._num_keyframes
