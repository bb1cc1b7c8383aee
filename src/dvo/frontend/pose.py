"""SE(3) pose representation for rigid body transformations."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

_SMALL_ANGLE = 1e-8


def skew(v: np.ndarray) -> np.ndarray:
    """Create skew-symmetric matrix from vector.

    Args:
        v: 3D vector

    Returns:
        3x3 skew-symmetric matrix [v]x
    """
    return np.array(
        [
            [0.0, -v[2], v[1]],
            [v[2], 0.0, -v[0]],
            [-v[1], v[0], 0.0],
        ],
        dtype=np.float64,
    )


def _left_jacobian(omega: np.ndarray) -> np.ndarray:
    """Return the SO(3) left Jacobian V used by the SE(3) exponential."""
    theta = float(np.linalg.norm(omega))
    K = skew(omega)
    if theta < _SMALL_ANGLE:
        return np.eye(3) + 0.5 * K + (K @ K) / 6.0

    theta2 = theta * theta
    return (
        np.eye(3)
        + ((1.0 - np.cos(theta)) / theta2) * K
        + ((theta - np.sin(theta)) / (theta2 * theta)) * (K @ K)
    )


def _left_jacobian_inverse(omega: np.ndarray) -> np.ndarray:
    """Return V^-1 used by the SE(3) logarithm."""
    theta = float(np.linalg.norm(omega))
    K = skew(omega)
    if theta < _SMALL_ANGLE:
        return np.eye(3) - 0.5 * K + (K @ K) / 12.0

    half = 0.5 * theta
    coeff = (1.0 - half * np.cos(half) / np.sin(half)) / (theta * theta)
    return np.eye(3) - 0.5 * K + coeff * (K @ K)


@dataclass(frozen=True, eq=False)
class SE3:
    """Rigid body transformation (rotation + translation) in SE(3).

    A relative pose T_kf_cur is the pose of the current camera expressed in
    the keyframe camera frame, so it maps current-camera points to keyframe
    coordinates:

        p_kf = R @ p_cur + t

    World poses T_world_cur compose as T_world_kf @ T_kf_cur.

    Instances are immutable: the arrays are copied on construction and
    marked read-only.

    Tangent vectors (twists) are ordered (v, omega): translational part
    first, then the rotation vector.

    Attributes:
        rotation: 3x3 orthonormal rotation matrix (det = +1)
        translation: 3D translation vector
    """

    rotation: np.ndarray  # 3x3 rotation matrix
    translation: np.ndarray  # (3,) translation vector

    def __post_init__(self) -> None:
        """Validate inputs and freeze the arrays."""
        rotation = np.array(self.rotation, dtype=np.float64)
        translation = np.array(self.translation, dtype=np.float64).flatten()

        if rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {rotation.shape}")
        if translation.shape != (3,):
            raise ValueError(f"Translation must be (3,), got {translation.shape}")

        rotation.setflags(write=False)
        translation.setflags(write=False)
        object.__setattr__(self, "rotation", rotation)
        object.__setattr__(self, "translation", translation)

    @classmethod
    def identity(cls) -> SE3:
        """Create identity transformation (no rotation, no translation)."""
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_Rt(cls, R: np.ndarray, t: np.ndarray) -> SE3:
        """Create SE3 from rotation matrix and translation vector."""
        return cls(rotation=R, translation=t)

    @classmethod
    def from_translation(cls, t: np.ndarray) -> SE3:
        """Create a pure translation."""
        return cls(rotation=np.eye(3), translation=t)

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> SE3:
        """Create SE3 from 4x4 homogeneous transformation matrix.

        Args:
            T: 4x4 transformation matrix of the form:
               [[R  t]
                [0  1]]

        Returns:
            SE3 transformation
        """
        T = np.asarray(T)
        if T.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4, got {T.shape}")

        return cls(rotation=T[:3, :3], translation=T[:3, 3])

    @classmethod
    def exp(cls, xi: np.ndarray) -> SE3:
        """Exponential map from se(3) to SE(3).

        Args:
            xi: Twist (6,) ordered as (v, omega)

        Returns:
            SE3 transformation
        """
        xi = np.asarray(xi, dtype=np.float64).flatten()
        if xi.shape != (6,):
            raise ValueError(f"Twist must be (6,), got {xi.shape}")

        v, omega = xi[:3], xi[3:]
        R, _ = cv2.Rodrigues(omega.reshape(3, 1))
        t = _left_jacobian(omega) @ v
        return cls(rotation=R, translation=t)

    def log(self) -> np.ndarray:
        """Logarithm map from SE(3) to se(3).

        Returns:
            Twist (6,) ordered as (v, omega)
        """
        rvec, _ = cv2.Rodrigues(np.array(self.rotation))
        omega = rvec.flatten()
        v = _left_jacobian_inverse(omega) @ self.translation
        return np.concatenate([v, omega])

    def to_matrix(self) -> np.ndarray:
        """Convert to 4x4 homogeneous transformation matrix."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def to_matrix3x4(self) -> np.ndarray:
        """Return the top three rows [R | t] of the homogeneous matrix."""
        return self.to_matrix()[:3, :]

    def inverse(self) -> SE3:
        """Compute the inverse transformation T^{-1}.

        For T = [R, t], the inverse is [R^T, -R^T @ t].
        """
        R_inv = self.rotation.T
        t_inv = -R_inv @ self.translation
        return SE3(rotation=R_inv, translation=t_inv)

    def compose(self, other: SE3) -> SE3:
        """Compose with another transformation: self @ other.

        Example:
            T_world_kf.compose(T_kf_cur) gives T_world_cur

        Args:
            other: SE3 transformation to compose with

        Returns:
            Composed SE3 transformation (self @ other)
        """
        R = self.rotation @ other.rotation
        t = self.rotation @ other.translation + self.translation
        return SE3(rotation=R, translation=t)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Apply the transformation to Nx3 points: p' = R @ p + t."""
        points = np.asarray(points)
        if points.ndim == 1:
            points = points.reshape(1, 3)

        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")

        return points @ self.rotation.T + self.translation

    @property
    def rotation_angle(self) -> float:
        """Return the rotation angle in radians, in [0, pi].

        Uses the trace formula: trace(R) = 1 + 2*cos(theta)
        """
        cos_theta = np.clip((np.trace(self.rotation) - 1.0) / 2.0, -1.0, 1.0)
        return float(np.arccos(cos_theta))

    @property
    def translation_norm(self) -> float:
        """Return the length of the translation vector."""
        return float(np.linalg.norm(self.translation))

    @property
    def position(self) -> np.ndarray:
        """Return the translation component as a writable copy."""
        return self.translation.copy()

    def is_finite(self) -> bool:
        """Return True if all entries are finite."""
        return bool(
            np.isfinite(self.rotation).all() and np.isfinite(self.translation).all()
        )

    def __repr__(self) -> str:
        """Return string representation."""
        pos = self.translation
        angle = np.rad2deg(self.rotation_angle)
        return (
            f"SE3(position=[{pos[0]:.3f}, {pos[1]:.3f}, {pos[2]:.3f}], "
            f"angle={angle:.2f}deg)"
        )

    def __matmul__(self, other: SE3) -> SE3:
        """Matrix multiplication operator for composition: T1 @ T2."""
        return self.compose(other)
