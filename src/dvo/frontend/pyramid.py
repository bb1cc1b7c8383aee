"""Coarse-to-fine image and disparity pyramids.

Level 0 holds the full-resolution data and every following level halves
the linear resolution of its parent, so the last level is the coarsest.
The optimizer walks the pyramid from the last index down to level 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

import cv2
import numpy as np

from ..errors import InvalidInputError
from .camera import StereoCalibration


@dataclass(frozen=True, eq=False)
class PyramidLevel:
    """Data of one pyramid level.

    Attributes:
        level: Level index (0 = full resolution)
        image: float32 intensity image
        disparity: float32 disparity in this level's pixels, NaN where invalid
        grad_x: float32 horizontal intensity gradient (central differences)
        grad_y: float32 vertical intensity gradient (central differences)
        calibration: Calibration scaled to this level
    """

    level: int
    image: np.ndarray
    disparity: np.ndarray
    grad_x: np.ndarray
    grad_y: np.ndarray
    calibration: StereoCalibration

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]

    @property
    def scale(self) -> int:
        """Return the downsampling factor relative to level 0."""
        return 1 << self.level

    @property
    def gradient_magnitude(self) -> np.ndarray:
        return np.sqrt(self.grad_x * self.grad_x + self.grad_y * self.grad_y)


class Pyramid:
    """Ordered, fixed-length sequence of pyramid levels (finest first)."""

    def __init__(self, levels: list[PyramidLevel]) -> None:
        if not levels:
            raise InvalidInputError("A pyramid needs at least one level")
        self._levels = tuple(levels)

    def __len__(self) -> int:
        return len(self._levels)

    def __getitem__(self, level: int) -> PyramidLevel:
        return self._levels[level]

    def __iter__(self) -> Iterator[PyramidLevel]:
        return iter(self._levels)

    @property
    def num_levels(self) -> int:
        return len(self._levels)

    @property
    def finest(self) -> PyramidLevel:
        return self._levels[0]

    @property
    def coarsest(self) -> PyramidLevel:
        return self._levels[-1]

    def coarse_to_fine(self) -> Iterator[PyramidLevel]:
        """Iterate levels from the coarsest to the finest."""
        return reversed(self._levels)


def _gradients(image: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Central-difference gradients, replicated at the border."""
    grad_x = cv2.Sobel(
        image, cv2.CV_32F, 1, 0, ksize=1, scale=0.5, borderType=cv2.BORDER_REPLICATE
    )
    grad_y = cv2.Sobel(
        image, cv2.CV_32F, 0, 1, ksize=1, scale=0.5, borderType=cv2.BORDER_REPLICATE
    )
    return grad_x, grad_y


def downsample_image(image: np.ndarray) -> np.ndarray:
    """Halve an image by averaging 2x2 blocks (odd edges are dropped)."""
    h, w = image.shape[0] // 2, image.shape[1] // 2
    cropped = np.ascontiguousarray(image[: 2 * h, : 2 * w], dtype=np.float32)
    return cv2.resize(cropped, (w, h), interpolation=cv2.INTER_AREA)


def downsample_disparity(disparity: np.ndarray) -> np.ndarray:
    """Halve a disparity map without mixing valid and invalid values.

    Each output pixel is the median of the valid (finite) values of its
    2x2 block, divided by two since disparity is measured in pixels.
    Blocks with no valid value stay invalid (NaN).

    Args:
        disparity: HxW disparity with NaN marking invalid pixels

    Returns:
        (H//2)x(W//2) disparity
    """
    h, w = disparity.shape[0] // 2, disparity.shape[1] // 2
    blocks = (
        disparity[: 2 * h, : 2 * w]
        .reshape(h, 2, w, 2)
        .transpose(0, 2, 1, 3)
        .reshape(h, w, 4)
    )

    # np.sort places NaN last, so the first n entries are the valid ones
    ordered = np.sort(blocks, axis=2)
    n_valid = np.isfinite(blocks).sum(axis=2)

    lo = np.clip((n_valid - 1) // 2, 0, 3)[..., None]
    hi = np.clip(n_valid // 2, 0, 3)[..., None]
    median = 0.5 * (
        np.take_along_axis(ordered, lo, axis=2)[..., 0]
        + np.take_along_axis(ordered, hi, axis=2)[..., 0]
    )
    median[n_valid == 0] = np.nan
    return (0.5 * median).astype(np.float32)


def _sanitize_disparity(disparity: np.ndarray) -> np.ndarray:
    """Return float32 disparity with every invalid value replaced by NaN."""
    out = np.array(disparity, dtype=np.float32)
    out[~(np.isfinite(out) & (out > 0))] = np.nan
    return out


def build_pyramid(
    image: np.ndarray,
    disparity: np.ndarray,
    levels: int,
    calibration: StereoCalibration,
) -> Pyramid:
    """Build an image/disparity pyramid.

    Args:
        image: HxW intensity image
        disparity: HxW disparity map (pixels); non-finite or <= 0 is invalid
        levels: Number of levels (>= 1)
        calibration: Full-resolution stereo calibration

    Returns:
        Pyramid with `levels` entries, level 0 at full resolution

    Raises:
        InvalidInputError: If the dimensions mismatch, levels is non-positive,
            or the image is too small for the requested depth
    """
    image = np.asarray(image)
    disparity = np.asarray(disparity)

    if levels < 1:
        raise InvalidInputError(f"Number of pyramid levels must be positive, got {levels}")
    if image.ndim != 2 or disparity.ndim != 2:
        raise InvalidInputError(
            f"Image and disparity must be 2D, got {image.shape} and {disparity.shape}"
        )
    if image.shape != disparity.shape:
        raise InvalidInputError(
            f"Image shape {image.shape} does not match disparity shape {disparity.shape}"
        )

    min_side = min(image.shape)
    if min_side >> (levels - 1) < 2:
        raise InvalidInputError(
            f"Image of size {image.shape[1]}x{image.shape[0]} is too small "
            f"for {levels} pyramid levels"
        )

    current_image = np.array(image, dtype=np.float32)
    current_disparity = _sanitize_disparity(disparity)

    pyramid_levels = []
    for level in range(levels):
        if level > 0:
            current_image = downsample_image(current_image)
            current_disparity = downsample_disparity(current_disparity)

        grad_x, grad_y = _gradients(current_image)
        for array in (current_image, current_disparity, grad_x, grad_y):
            array.setflags(write=False)

        pyramid_levels.append(
            PyramidLevel(
                level=level,
                image=current_image,
                disparity=current_disparity,
                grad_x=grad_x,
                grad_y=grad_y,
                calibration=calibration.scaled(level),
            )
        )

    return Pyramid(pyramid_levels)
