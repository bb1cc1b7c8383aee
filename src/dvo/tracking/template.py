"""Keyframe template: the cached reference data of one pyramid level.

For the inverse-compositional formulation the Jacobian of every template
pixel is evaluated once on the keyframe at the identity warp and reused
for every frame tracked against that keyframe.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..config import AlgorithmParameters
from ..frontend.camera import StereoCalibration
from ..frontend.pyramid import PyramidLevel


@dataclass(frozen=True, eq=False)
class Template:
    """Selected keyframe pixels of one level and their cached data.

    Attributes:
        level: Pyramid level index
        pixels: Nx2 (u, v) pixel coordinates in the level
        points: Nx3 back-projected points in the keyframe camera frame
        intensities: (N,) template intensities
        jacobians: Nx6 photometric Jacobian w.r.t. the twist (v, omega)
        calibration: Calibration of the level
    """

    level: int
    pixels: np.ndarray
    points: np.ndarray
    intensities: np.ndarray
    jacobians: np.ndarray
    calibration: StereoCalibration

    @property
    def num_points(self) -> int:
        return len(self.intensities)


def photometric_jacobians(
    points: np.ndarray,
    grad_x: np.ndarray,
    grad_y: np.ndarray,
    calibration: StereoCalibration,
) -> np.ndarray:
    """Chain image gradient, projection and SE(3) derivatives.

    Args:
        points: Nx3 points in the keyframe camera frame
        grad_x: (N,) horizontal image gradient at the points' pixels
        grad_y: (N,) vertical image gradient at the points' pixels
        calibration: Level calibration

    Returns:
        Nx6 Jacobian of the intensity w.r.t. a twist (v, omega) applied
        to the points at the identity
    """
    fx, fy = calibration.intrinsics.fx, calibration.intrinsics.fy
    X, Y, Z = points[:, 0], points[:, 1], points[:, 2]
    inv_z = 1.0 / Z
    x = X * inv_z
    y = Y * inv_z

    gu = grad_x * fx
    gv = grad_y * fy

    J = np.empty((len(points), 6), dtype=np.float64)
    J[:, 0] = gu * inv_z
    J[:, 1] = gv * inv_z
    J[:, 2] = -(gu * x + gv * y) * inv_z
    J[:, 3] = -gu * x * y - gv * (1.0 + y * y)
    J[:, 4] = gu * (1.0 + x * x) + gv * x * y
    J[:, 5] = -gu * y + gv * x
    return J


def select_pixels(level: PyramidLevel, params: AlgorithmParameters) -> np.ndarray:
    """Pick the template pixels of a level.

    Pixels must lie at least one pixel inside the border, carry a valid
    disparity of at least min_disparity (full-resolution pixels) and have
    a gradient magnitude of at least min_gradient_magnitude. With a point
    cap, the strongest gradients are kept.

    Returns:
        (N, 2) integer array of (row, col) indices in raster order
    """
    h, w = level.height, level.width
    magnitude = level.gradient_magnitude
    disparity = level.disparity

    mask = np.zeros((h, w), dtype=bool)
    mask[1 : h - 1, 1 : w - 1] = True
    with np.errstate(invalid="ignore"):
        mask &= np.isfinite(disparity)
        mask &= disparity * level.scale >= params.min_disparity
    mask &= magnitude >= params.min_gradient_magnitude

    rows, cols = np.nonzero(mask)
    cap = params.max_points_per_level
    if cap > 0 and len(rows) > cap:
        strength = magnitude[rows, cols]
        keep = np.sort(np.argpartition(-strength, cap - 1)[:cap])
        rows, cols = rows[keep], cols[keep]

    return np.column_stack([rows, cols])


def build_template(level: PyramidLevel, params: AlgorithmParameters) -> Template:
    """Build the cached reference data for one keyframe pyramid level."""
    indices = select_pixels(level, params)
    rows, cols = indices[:, 0], indices[:, 1]

    pixels = np.column_stack([cols, rows]).astype(np.float64)
    disparity = level.disparity[rows, cols].astype(np.float64)
    points = level.calibration.backproject(pixels, disparity)

    jacobians = photometric_jacobians(
        points,
        level.grad_x[rows, cols].astype(np.float64),
        level.grad_y[rows, cols].astype(np.float64),
        level.calibration,
    )

    return Template(
        level=level.level,
        pixels=pixels,
        points=points,
        intensities=level.image[rows, cols].astype(np.float64),
        jacobians=jacobians,
        calibration=level.calibration,
    )
