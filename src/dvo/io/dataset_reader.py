"""Reader for rectified image + disparity sequences stored on disk."""

from pathlib import Path
from typing import Iterator

import cv2
import numpy as np

from ..frontend.camera import StereoCalibration
from ..frontend.frame import Frame, ImageSize
from .calibration import load_calibration

IMAGE_EXTENSIONS = (".png", ".pgm", ".jpg", ".jpeg", ".tif", ".tiff")
DISPARITY_EXTENSIONS = (".npy", ".png", ".pfm", ".tif", ".tiff")


class DatasetReader:
    """Reader for a sequence of rectified images with dense disparity.

    Expected structure::

        <dataset>/
            calibration.yaml     fx, fy, cx, cy, baseline, width, height
            image/               8-bit grayscale (or color) images
            disparity/           .npy float arrays, or 16-bit images

    Images and disparities are paired by file stem and read in sorted
    order. 16-bit disparity images are divided by disparity_scale (256 for
    KITTI-style maps); zero marks a missing value.
    """

    def __init__(self, dataset_path: str | Path, disparity_scale: float = 256.0) -> None:
        """Initialize reader with path to dataset.

        Args:
            dataset_path: Path to the dataset directory
            disparity_scale: Divisor applied to integer disparity images

        Raises:
            FileNotFoundError: If dataset path or required directories don't exist
            ValueError: If no frames are found
        """
        self.dataset_path = Path(dataset_path)
        self.image_path = self.dataset_path / "image"
        self.disparity_path = self.dataset_path / "disparity"
        self.calibration_path = self.dataset_path / "calibration.yaml"
        self._disparity_scale = disparity_scale

        self._validate_paths()

        self._calibration, self._image_size = load_calibration(self.calibration_path)
        self._frame_list = self._load_frame_list()

        if not self._frame_list:
            raise ValueError(f"No frames found in {self.image_path}")

        self._current_idx = 0

    def _validate_paths(self) -> None:
        """Validate that all required paths exist."""
        if not self.dataset_path.exists():
            raise FileNotFoundError(f"Dataset path does not exist: {self.dataset_path}")

        if not self.image_path.exists():
            raise FileNotFoundError(
                f"image directory not found: {self.image_path}\n"
                f"Expected structure: {self.dataset_path}/image/"
            )

        if not self.disparity_path.exists():
            raise FileNotFoundError(
                f"disparity directory not found: {self.disparity_path}\n"
                f"Expected structure: {self.dataset_path}/disparity/"
            )

        if not self.calibration_path.exists():
            raise FileNotFoundError(
                f"calibration.yaml not found: {self.calibration_path}\n"
                f"This file is required to know the camera intrinsics and baseline."
            )

    def _load_frame_list(self) -> list[tuple[Path, Path]]:
        """Pair image and disparity files by stem, in sorted order.

        Returns:
            List of (image_path, disparity_path) tuples

        Raises:
            FileNotFoundError: If an image has no matching disparity file
        """
        disparities = {
            p.stem: p
            for p in sorted(self.disparity_path.iterdir())
            if p.suffix.lower() in DISPARITY_EXTENSIONS
        }

        frame_list = []
        for image_file in sorted(self.image_path.iterdir()):
            if image_file.suffix.lower() not in IMAGE_EXTENSIONS:
                continue
            disparity_file = disparities.get(image_file.stem)
            if disparity_file is None:
                raise FileNotFoundError(
                    f"Disparity not found for image: {image_file.name}"
                )
            frame_list.append((image_file, disparity_file))

        return frame_list

    def _load_disparity(self, path: Path) -> np.ndarray:
        """Load a disparity map as float32."""
        if path.suffix.lower() == ".npy":
            disparity = np.load(path)
        else:
            disparity = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
            if disparity is None:
                raise ValueError(f"Failed to load disparity: {path}")
            if np.issubdtype(disparity.dtype, np.integer):
                disparity = disparity.astype(np.float32) / self._disparity_scale

        return np.asarray(disparity, dtype=np.float32)

    def get_frame(self, index: int) -> Frame:
        """Load the frame at a given index.

        Raises:
            IndexError: If index is out of range
            ValueError: If image loading fails
        """
        image_file, disparity_file = self._frame_list[index]

        image = cv2.imread(str(image_file), cv2.IMREAD_GRAYSCALE)
        if image is None:
            raise ValueError(f"Failed to load image: {image_file}")

        disparity = self._load_disparity(disparity_file)
        return Frame.from_buffers(image, disparity, self._image_size)

    def next_frame(self) -> Frame | None:
        """Get next frame, or None if no more frames are available."""
        if self._current_idx >= len(self._frame_list):
            return None

        frame = self.get_frame(self._current_idx)
        self._current_idx += 1
        return frame

    def image_size(self) -> ImageSize:
        """Return the image size from the calibration file."""
        return self._image_size

    def calibration(self) -> StereoCalibration:
        """Return the stereo calibration."""
        return self._calibration

    def reset(self) -> None:
        """Reset iterator to beginning of dataset."""
        self._current_idx = 0

    def __len__(self) -> int:
        """Return total number of frames in dataset."""
        return len(self._frame_list)

    def __iter__(self) -> Iterator[Frame]:
        """Allow iteration over dataset (restarts from the first frame)."""
        self.reset()
        return self

    def __next__(self) -> Frame:
        """Get next frame for iterator protocol."""
        frame = self.next_frame()
        if frame is None:
            raise StopIteration
        return frame
