"""Stereo calibration file parsing."""

from __future__ import annotations

from pathlib import Path

import yaml

from ..frontend.camera import CameraIntrinsics, StereoCalibration
from ..frontend.frame import ImageSize

_REQUIRED_KEYS = ("fx", "fy", "cx", "cy", "baseline", "width", "height")


def parse_calibration(data: dict, source: str = "<dict>") -> tuple[StereoCalibration, ImageSize]:
    """Build calibration and image size from a parsed YAML mapping.

    Accepts either the flat keys fx, fy, cx, cy or an ``intrinsics`` list
    [fx, fy, cx, cy], plus baseline (meters), width and height (pixels).

    Raises:
        ValueError: If a value is missing or invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"Invalid calibration in {source}: expected a mapping")

    data = dict(data)
    intrinsics_list = data.pop("intrinsics", None)
    if intrinsics_list is not None:
        if len(intrinsics_list) != 4:
            raise ValueError(f"Invalid intrinsics in {source}")
        data.update(zip(("fx", "fy", "cx", "cy"), intrinsics_list))

    missing = [key for key in _REQUIRED_KEYS if key not in data]
    if missing:
        raise ValueError(f"Missing calibration values in {source}: {', '.join(missing)}")

    try:
        intrinsics = CameraIntrinsics(
            fx=float(data["fx"]),
            fy=float(data["fy"]),
            cx=float(data["cx"]),
            cy=float(data["cy"]),
        )
        calibration = StereoCalibration(
            intrinsics=intrinsics, baseline=float(data["baseline"])
        )
        image_size = ImageSize(width=int(data["width"]), height=int(data["height"]))
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid calibration in {source}: {e}") from e

    if image_size.width <= 0 or image_size.height <= 0:
        raise ValueError(f"Invalid image size in {source}: {image_size}")

    return calibration, image_size


def load_calibration(yaml_path: str | Path) -> tuple[StereoCalibration, ImageSize]:
    """Parse a rectified stereo calibration YAML file.

    Args:
        yaml_path: Path to the calibration file

    Returns:
        Tuple of (calibration, image_size)

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If file format is invalid
    """
    path = Path(yaml_path)
    if not path.exists():
        raise FileNotFoundError(f"Calibration file not found: {yaml_path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f)

    return parse_calibration(data, str(yaml_path))
