"""Tests for DatasetReader class."""

from pathlib import Path

import cv2
import numpy as np
import pytest

from dvo.io.dataset_reader import DatasetReader
from dvo.io.frame_source import FrameSource

CALIBRATION = """\
fx: 100.0
fy: 100.0
cx: 49.5
cy: 39.5
baseline: 0.12
width: 100
height: 80
"""


@pytest.fixture
def mock_dataset(tmp_path: Path) -> Path:
    """Create a mock image + disparity dataset for testing.

    Args:
        tmp_path: Pytest temporary directory fixture

    Returns:
        Path to the dataset directory
    """
    dataset = tmp_path / "sequence"
    image_dir = dataset / "image"
    disparity_dir = dataset / "disparity"
    image_dir.mkdir(parents=True)
    disparity_dir.mkdir(parents=True)
    (dataset / "calibration.yaml").write_text(CALIBRATION)

    for i in range(3):
        name = f"{i:06d}"

        # Image with value = i * 50
        image = np.full((80, 100), i * 50, dtype=np.uint8)
        cv2.imwrite(str(image_dir / f"{name}.png"), image)

        if i == 1:
            # KITTI-style 16-bit disparity, scaled by 256
            disparity = np.full((80, 100), 12 * 256, dtype=np.uint16)
            cv2.imwrite(str(disparity_dir / f"{name}.png"), disparity)
        else:
            disparity = np.full((80, 100), 10.0 + i, dtype=np.float32)
            np.save(disparity_dir / f"{name}.npy", disparity)

    return dataset


class TestDatasetReader:
    """Test suite for DatasetReader class."""

    def test_initialization(self, mock_dataset: Path):
        """Test that DatasetReader initializes correctly."""
        reader = DatasetReader(str(mock_dataset))

        assert reader.dataset_path == mock_dataset
        assert len(reader) == 3
        assert reader._current_idx == 0
        assert isinstance(reader, FrameSource)

    def test_calibration(self, mock_dataset: Path):
        """Test that calibration.yaml is parsed."""
        reader = DatasetReader(mock_dataset)

        calibration = reader.calibration()
        assert calibration.baseline == pytest.approx(0.12)
        assert calibration.intrinsics.cx == pytest.approx(49.5)
        assert reader.image_size() == (100, 80)

    def test_initialization_missing_dataset_path(self, tmp_path: Path):
        """Test that initialization fails with missing dataset path."""
        nonexistent = tmp_path / "nonexistent"

        with pytest.raises(FileNotFoundError, match="Dataset path does not exist"):
            DatasetReader(str(nonexistent))

    def test_initialization_missing_image_dir(self, tmp_path: Path):
        """Test that initialization fails when image directory is missing."""
        dataset = tmp_path / "sequence"
        dataset.mkdir()

        with pytest.raises(FileNotFoundError, match="image directory not found"):
            DatasetReader(str(dataset))

    def test_initialization_missing_disparity_dir(self, tmp_path: Path):
        """Test that initialization fails when disparity directory is missing."""
        dataset = tmp_path / "sequence"
        (dataset / "image").mkdir(parents=True)

        with pytest.raises(FileNotFoundError, match="disparity directory not found"):
            DatasetReader(str(dataset))

    def test_initialization_missing_calibration(self, tmp_path: Path):
        """Test that initialization fails when calibration.yaml is missing."""
        dataset = tmp_path / "sequence"
        (dataset / "image").mkdir(parents=True)
        (dataset / "disparity").mkdir(parents=True)

        with pytest.raises(FileNotFoundError, match="calibration.yaml not found"):
            DatasetReader(str(dataset))

    def test_initialization_no_frames(self, tmp_path: Path):
        """Test that initialization fails without any image."""
        dataset = tmp_path / "sequence"
        (dataset / "image").mkdir(parents=True)
        (dataset / "disparity").mkdir(parents=True)
        (dataset / "calibration.yaml").write_text(CALIBRATION)

        with pytest.raises(ValueError, match="No frames found"):
            DatasetReader(str(dataset))

    def test_missing_disparity(self, mock_dataset: Path):
        """Test that an image without a disparity map is reported."""
        image = np.zeros((80, 100), dtype=np.uint8)
        cv2.imwrite(str(mock_dataset / "image" / "000003.png"), image)

        with pytest.raises(FileNotFoundError, match="Disparity not found"):
            DatasetReader(mock_dataset)

    def test_next_frame(self, mock_dataset: Path):
        """Test getting the next frame."""
        reader = DatasetReader(str(mock_dataset))

        frame = reader.next_frame()
        assert frame is not None
        assert frame.image.shape == (80, 100)
        assert np.all(frame.image == 0)
        assert np.all(frame.disparity == 10.0)

    def test_scaled_integer_disparity(self, mock_dataset: Path):
        """Test that 16-bit disparity images are divided by the scale."""
        reader = DatasetReader(mock_dataset)

        frame = reader.get_frame(1)
        np.testing.assert_allclose(frame.disparity, 12.0)
        assert np.all(frame.image == 50)

    def test_next_frame_exhausted(self, mock_dataset: Path):
        """Test that next_frame returns None when exhausted."""
        reader = DatasetReader(str(mock_dataset))

        for _ in range(3):
            assert reader.next_frame() is not None

        assert reader.next_frame() is None

    def test_reset(self, mock_dataset: Path):
        """Test that reset returns iterator to beginning."""
        reader = DatasetReader(str(mock_dataset))

        reader.next_frame()
        reader.next_frame()
        assert reader._current_idx == 2

        reader.reset()
        assert reader._current_idx == 0

        frame = reader.next_frame()
        assert np.all(frame.image == 0)

    def test_iterator_protocol(self, mock_dataset: Path):
        """Test that frames come out in sorted order."""
        reader = DatasetReader(str(mock_dataset))

        values = [int(frame.image[0, 0]) for frame in reader]

        assert values == [0, 50, 100]

    def test_multiple_iterations(self, mock_dataset: Path):
        """Test that reader can be iterated multiple times."""
        reader = DatasetReader(str(mock_dataset))

        assert sum(1 for _ in reader) == 3
        assert sum(1 for _ in reader) == 3

    def test_wrong_image_size(self, mock_dataset: Path):
        """Test that frames must match the calibrated size."""
        cv2.imwrite(
            str(mock_dataset / "image" / "000000.png"), np.zeros((40, 50), dtype=np.uint8)
        )
        reader = DatasetReader(mock_dataset)

        with pytest.raises(ValueError):
            reader.get_frame(0)
