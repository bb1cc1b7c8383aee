"""Accumulation of relative poses into a world trajectory."""

from __future__ import annotations

from typing import Iterator

import numpy as np

from ..frontend.pose import SE3
from .keyframe import KeyframingReason


class Trajectory:
    """Append-only ordered sequence of world poses, one per frame."""

    def __init__(self) -> None:
        self._poses: list[SE3] = []

    def append(self, pose: SE3) -> None:
        """Add the world pose of the next frame."""
        self._poses.append(pose)

    def __len__(self) -> int:
        return len(self._poses)

    def __getitem__(self, index: int) -> SE3:
        return self._poses[index]

    def __iter__(self) -> Iterator[SE3]:
        return iter(self._poses)

    @property
    def last(self) -> SE3 | None:
        """Return the most recent pose."""
        return self._poses[-1] if self._poses else None

    def positions(self) -> np.ndarray:
        """Return camera positions as Nx3 array."""
        if len(self._poses) == 0:
            return np.empty((0, 3), dtype=np.float64)
        return np.array([p.translation for p in self._poses], dtype=np.float64)

    def to_list(self) -> list[SE3]:
        """Return a copy of the poses."""
        return self._poses.copy()


class TrajectoryAccumulator:
    """Composes keyframe-relative poses into world poses.

    Keeps the world pose of the active keyframe. Every frame's world pose
    is that baseline composed with the frame's relative pose. When a frame
    is promoted to keyframe, its world pose becomes the new baseline, so
    the path is continuous across keyframe switches.
    """

    def __init__(self, initial_pose: SE3 | None = None) -> None:
        """Initialize accumulator.

        Args:
            initial_pose: World pose of the first keyframe (default: identity)
        """
        self._initial_pose = initial_pose if initial_pose is not None else SE3.identity()
        self._keyframe_pose = self._initial_pose
        self._trajectory = Trajectory()

    def append(self, relative_pose: SE3, reason: KeyframingReason) -> SE3:
        """Add a frame and return its world pose.

        Args:
            relative_pose: T_kf_cur relative to the keyframe the frame was
                tracked against
            reason: Keyframing decision for the frame

        Returns:
            World pose T_world_cur
        """
        world_pose = self._keyframe_pose @ relative_pose
        self._trajectory.append(world_pose)
        if reason.is_keyframe:
            self._keyframe_pose = world_pose
        return world_pose

    def reset(self) -> None:
        """Clear the trajectory and restore the initial baseline."""
        self._keyframe_pose = self._initial_pose
        self._trajectory = Trajectory()

    @property
    def keyframe_pose(self) -> SE3:
        """Return the world pose of the active keyframe."""
        return self._keyframe_pose

    @property
    def trajectory(self) -> Trajectory:
        return self._trajectory
