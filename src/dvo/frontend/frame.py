"""Input frame: rectified intensity image plus dense disparity."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, NamedTuple

import numpy as np

from ..errors import InvalidInputError

if TYPE_CHECKING:
    from .camera import StereoCalibration


class ImageSize(NamedTuple):
    """Image dimensions in pixels."""

    width: int
    height: int

    @property
    def shape(self) -> tuple[int, int]:
        """Return numpy shape (rows, cols)."""
        return (self.height, self.width)

    @property
    def num_pixels(self) -> int:
        """Return total pixel count."""
        return self.width * self.height


def _as_image(array: np.ndarray, name: str, image_size: ImageSize | None) -> np.ndarray:
    """Convert a 2D array or flat row-major buffer to a read-only float32 image."""
    array = np.asarray(array)
    if array.ndim == 1:
        if image_size is None:
            raise InvalidInputError(f"Flat {name} buffer requires an image size")
        if array.size != image_size.num_pixels:
            raise InvalidInputError(
                f"{name} buffer has {array.size} elements, "
                f"expected {image_size.num_pixels} for {image_size.width}x{image_size.height}"
            )
        array = array.reshape(image_size.shape)
    elif array.ndim == 3 and array.shape[2] == 1:
        array = array[:, :, 0]

    if array.ndim != 2:
        raise InvalidInputError(f"{name} must be a single-channel 2D array, got {array.shape}")

    image = np.array(array, dtype=np.float32)
    image.setflags(write=False)
    return image


@dataclass(frozen=True, eq=False)
class Frame:
    """One time step of input.

    Disparity is measured in pixels at full resolution. Non-finite values
    and values <= 0 mark pixels without a disparity estimate.

    Attributes:
        image: HxW float32 intensity image (read-only)
        disparity: HxW float32 disparity map (read-only)
    """

    image: np.ndarray
    disparity: np.ndarray

    def __post_init__(self) -> None:
        """Normalize buffers and check that the dimensions agree."""
        image = _as_image(self.image, "image", None)
        disparity = _as_image(self.disparity, "disparity", None)
        if image.shape != disparity.shape:
            raise InvalidInputError(
                f"Image shape {image.shape} does not match disparity shape {disparity.shape}"
            )
        object.__setattr__(self, "image", image)
        object.__setattr__(self, "disparity", disparity)

    @classmethod
    def from_buffers(
        cls, image: np.ndarray, disparity: np.ndarray, image_size: ImageSize
    ) -> Frame:
        """Create a frame from 2D arrays or flat row-major buffers.

        Args:
            image: Intensity buffer (any numeric dtype, e.g. uint8)
            disparity: Disparity buffer (float)
            image_size: Expected dimensions

        Raises:
            InvalidInputError: If a buffer does not match image_size
        """
        frame = cls(
            image=_as_image(image, "image", image_size),
            disparity=_as_image(disparity, "disparity", image_size),
        )
        if frame.size != image_size:
            raise InvalidInputError(
                f"Frame is {frame.size.width}x{frame.size.height}, "
                f"expected {image_size.width}x{image_size.height}"
            )
        return frame

    @classmethod
    def from_depth(
        cls, image: np.ndarray, depth: np.ndarray, calibration: StereoCalibration
    ) -> Frame:
        """Create a frame from a metric depth map instead of disparity."""
        depth = np.asarray(depth)
        if depth.ndim != 2:
            raise InvalidInputError(f"depth must be a 2D array, got {depth.shape}")
        disparity = calibration.depth_to_disparity(depth)
        return cls(image=image, disparity=np.nan_to_num(disparity, nan=0.0))

    @property
    def size(self) -> ImageSize:
        """Return frame dimensions."""
        return ImageSize(width=self.image.shape[1], height=self.image.shape[0])

    @property
    def valid_disparity(self) -> np.ndarray:
        """Return boolean mask of pixels with a usable disparity."""
        return np.isfinite(self.disparity) & (self.disparity > 0)
