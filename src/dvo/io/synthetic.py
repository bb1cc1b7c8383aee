"""Synthetic frame source: a textured plane seen by a moving stereo camera.

Each frame is ray-cast exactly (no resampling), so the intensity and
disparity of every pixel are consistent with the camera pose up to
floating point precision. Useful for tests and demos where ground truth
motion must be known.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

import numpy as np

from ..frontend.camera import CameraIntrinsics, StereoCalibration
from ..frontend.frame import Frame, ImageSize
from ..frontend.pose import SE3

# (amplitude, wavelength_x, wavelength_y) of the plane texture, meters
_TEXTURE_WAVES = (
    (34.0, 0.61, np.inf),
    (30.0, np.inf, 0.47),
    (22.0, 0.29, 0.37),
    (16.0, 0.23, -0.41),
    (10.0, 0.17, 0.53),
)


@dataclass(frozen=True)
class PlaneScene:
    """Slanted textured plane Z = depth + slope_x * X + slope_y * Y (world frame)."""

    depth: float = 2.0
    slope_x: float = 0.2
    slope_y: float = 0.1
    brightness: float = 128.0

    def texture(self, X: np.ndarray, Y: np.ndarray) -> np.ndarray:
        """Return the intensity of world plane points."""
        intensity = np.full(X.shape, self.brightness, dtype=np.float64)
        for amplitude, wx, wy in _TEXTURE_WAVES:
            phase = 2.0 * np.pi * (X / wx + Y / wy)
            intensity += amplitude * np.sin(phase)
        return intensity

    def render(
        self,
        pose: SE3,
        calibration: StereoCalibration,
        image_size: ImageSize,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Ray-cast the plane from a camera pose.

        Args:
            pose: Camera pose T_world_cam
            calibration: Stereo calibration
            image_size: Output size

        Returns:
            Tuple of (intensity image, disparity map). Pixels whose ray
            misses the plane get disparity 0 and intensity 0.
        """
        K = calibration.intrinsics
        u, v = np.meshgrid(
            np.arange(image_size.width, dtype=np.float64),
            np.arange(image_size.height, dtype=np.float64),
        )
        rays_cam = np.stack(
            [(u - K.cx) / K.fx, (v - K.cy) / K.fy, np.ones_like(u)], axis=-1
        )
        rays_world = rays_cam @ pose.rotation.T
        origin = pose.translation

        normal = np.array([-self.slope_x, -self.slope_y, 1.0])
        denom = rays_world @ normal
        with np.errstate(divide="ignore", invalid="ignore"):
            s = (self.depth - normal @ origin) / denom
        hit = np.isfinite(s) & (s > 0)

        points = origin + s[..., None] * rays_world
        image = np.where(hit, self.texture(points[..., 0], points[..., 1]), 0.0)
        with np.errstate(divide="ignore", invalid="ignore"):
            disparity = np.where(hit, calibration.fx_baseline / s, 0.0)

        return np.clip(image, 0.0, 255.0).astype(np.float32), disparity.astype(np.float32)


class SyntheticSequence:
    """FrameSource rendering a plane scene from a list of camera poses."""

    def __init__(
        self,
        poses: list[SE3],
        calibration: StereoCalibration | None = None,
        image_size: ImageSize | None = None,
        scene: PlaneScene | None = None,
        noise_sigma: float = 0.0,
        seed: int = 0,
    ) -> None:
        """Initialize the sequence.

        Args:
            poses: Camera poses T_world_cam, one per frame
            calibration: Stereo calibration (default: 160x120, f=200, b=0.1)
            image_size: Frame size (default: 160x120)
            scene: Scene to render (default: PlaneScene())
            noise_sigma: Standard deviation of additive intensity noise
            seed: Seed of the noise generator
        """
        self._poses = list(poses)
        self._image_size = image_size if image_size is not None else ImageSize(160, 120)
        if calibration is None:
            calibration = StereoCalibration(
                intrinsics=CameraIntrinsics(
                    fx=200.0,
                    fy=200.0,
                    cx=(self._image_size.width - 1) / 2.0,
                    cy=(self._image_size.height - 1) / 2.0,
                ),
                baseline=0.1,
            )
        self._calibration = calibration
        self._scene = scene if scene is not None else PlaneScene()
        self._noise_sigma = noise_sigma
        self._rng = np.random.default_rng(seed)
        self._current_idx = 0

    @classmethod
    def translating(
        cls, step: np.ndarray, num_frames: int, **kwargs
    ) -> SyntheticSequence:
        """Camera translating by a constant step per frame, starting at the origin."""
        step = np.asarray(step, dtype=np.float64)
        poses = [SE3.from_translation(i * step) for i in range(num_frames)]
        return cls(poses, **kwargs)

    def render(self, pose: SE3) -> Frame:
        """Render one frame from a camera pose."""
        image, disparity = self._scene.render(pose, self._calibration, self._image_size)
        if self._noise_sigma > 0:
            noise = self._rng.normal(0.0, self._noise_sigma, size=image.shape)
            image = np.clip(image + noise, 0.0, 255.0).astype(np.float32)
        return Frame(image=image, disparity=disparity)

    def next_frame(self) -> Frame | None:
        """Return the next frame, or None when all poses were rendered."""
        if self._current_idx >= len(self._poses):
            return None
        frame = self.render(self._poses[self._current_idx])
        self._current_idx += 1
        return frame

    def image_size(self) -> ImageSize:
        return self._image_size

    def calibration(self) -> StereoCalibration:
        return self._calibration

    @property
    def poses(self) -> list[SE3]:
        """Return the ground truth camera poses."""
        return self._poses.copy()

    def reset(self) -> None:
        self._current_idx = 0

    def __len__(self) -> int:
        return len(self._poses)

    def __iter__(self) -> Iterator[Frame]:
        self.reset()
        while (frame := self.next_frame()) is not None:
            yield frame
