"""Rectified stereo camera model: pinhole intrinsics plus baseline."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class CameraIntrinsics:
    """Camera intrinsic parameters (pinhole model)."""

    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)

    @classmethod
    def from_matrix(cls, K: np.ndarray) -> CameraIntrinsics:
        """Create intrinsics from a 3x3 camera matrix."""
        K = np.asarray(K, dtype=np.float64)
        if K.shape != (3, 3):
            raise ValueError(f"Camera matrix must be 3x3, got {K.shape}")
        return cls(
            fx=float(K[0, 0]), fy=float(K[1, 1]), cx=float(K[0, 2]), cy=float(K[1, 2])
        )

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def scaled(self, level: int) -> CameraIntrinsics:
        """Return the intrinsics of a pyramid level.

        Each level halves the resolution with 2x2 area averaging, so pixel
        centers map as x_l = (x + 0.5) / 2^l - 0.5.
        """
        s = 1.0 / (1 << level)
        return CameraIntrinsics(
            fx=self.fx * s,
            fy=self.fy * s,
            cx=(self.cx + 0.5) * s - 0.5,
            cy=(self.cy + 0.5) * s - 0.5,
        )


@dataclass(frozen=True)
class StereoCalibration:
    """Calibration of a rectified stereo rig.

    Attributes:
        intrinsics: Pinhole intrinsics of the (left) reference camera
        baseline: Distance between the camera centers in meters
    """

    intrinsics: CameraIntrinsics
    baseline: float

    def __post_init__(self) -> None:
        """Validate calibration values."""
        if not self.baseline > 0:
            raise ValueError(f"Baseline must be positive, got {self.baseline}")
        if not (self.intrinsics.fx > 0 and self.intrinsics.fy > 0):
            raise ValueError("Focal lengths must be positive")

    @classmethod
    def from_matrix(cls, K: np.ndarray, baseline: float) -> StereoCalibration:
        """Create calibration from a 3x3 camera matrix and baseline."""
        return cls(intrinsics=CameraIntrinsics.from_matrix(K), baseline=float(baseline))

    def scaled(self, level: int) -> StereoCalibration:
        """Return the calibration of a pyramid level (baseline unchanged)."""
        return StereoCalibration(
            intrinsics=self.intrinsics.scaled(level), baseline=self.baseline
        )

    @property
    def K(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix."""
        return self.intrinsics.to_matrix()

    @property
    def fx_baseline(self) -> float:
        """Return fx * baseline, the disparity-depth conversion constant."""
        return self.intrinsics.fx * self.baseline

    def disparity_to_depth(self, disparity: np.ndarray) -> np.ndarray:
        """Convert disparity (pixels) to depth (meters). Invalid stays NaN."""
        disparity = np.asarray(disparity, dtype=np.float64)
        depth = np.full(disparity.shape, np.nan, dtype=np.float64)
        valid = np.isfinite(disparity) & (disparity > 0)
        depth[valid] = self.fx_baseline / disparity[valid]
        return depth

    def depth_to_disparity(self, depth: np.ndarray) -> np.ndarray:
        """Convert depth (meters) to disparity (pixels). Invalid stays NaN."""
        depth = np.asarray(depth, dtype=np.float64)
        disparity = np.full(depth.shape, np.nan, dtype=np.float64)
        valid = np.isfinite(depth) & (depth > 0)
        disparity[valid] = self.fx_baseline / depth[valid]
        return disparity

    def backproject(self, pixels: np.ndarray, disparity: np.ndarray) -> np.ndarray:
        """Triangulate pixels with known disparity into 3D camera points.

        Args:
            pixels: Nx2 array of (u, v) pixel coordinates
            disparity: (N,) disparities in pixels (must be positive)

        Returns:
            Nx3 array of 3D points in the camera frame
        """
        K = self.intrinsics
        Z = self.fx_baseline / np.asarray(disparity, dtype=np.float64)
        X = (pixels[:, 0] - K.cx) / K.fx * Z
        Y = (pixels[:, 1] - K.cy) / K.fy * Z
        return np.column_stack([X, Y, Z])

    def project(self, points: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Project 3D camera points to pixels.

        Args:
            points: Nx3 array of 3D points in the camera frame

        Returns:
            Tuple of (Nx2 pixel coordinates, (N,) bool mask of points in
            front of the camera). Pixels of masked-out points are NaN.
        """
        K = self.intrinsics
        Z = points[:, 2]
        in_front = Z > 1e-6
        with np.errstate(divide="ignore", invalid="ignore"):
            inv_z = np.where(in_front, 1.0 / Z, np.nan)
        u = K.fx * points[:, 0] * inv_z + K.cx
        v = K.fy * points[:, 1] * inv_z + K.cy
        return np.column_stack([u, v]), in_front
