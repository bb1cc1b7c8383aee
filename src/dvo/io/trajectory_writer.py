"""Plain-text export of trajectories and per-frame statistics."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Sequence

import numpy as np

from ..frontend.pose import SE3


def write_poses(path: str | Path, poses: Iterable[SE3]) -> None:
    """Write one row-major 3x4 pose matrix per line (KITTI layout)."""
    rows = [pose.to_matrix3x4().reshape(-1) for pose in poses]
    data = np.array(rows, dtype=np.float64).reshape(-1, 12)
    np.savetxt(path, data, fmt="%.9e")


def write_camera_path(path: str | Path, poses: Iterable[SE3]) -> None:
    """Write the camera position x y z of each pose, one per line."""
    positions = np.array([pose.position for pose in poses], dtype=np.float64)
    np.savetxt(path, positions.reshape(-1, 3), fmt="%.9f")


def write_values(
    path: str | Path, values: Iterable[float | int], fmt: str = "%.6g"
) -> None:
    """Write one scalar per line."""
    np.savetxt(path, np.array(list(values), dtype=np.float64).reshape(-1), fmt=fmt)


def write_results(
    prefix: str | Path,
    trajectory: Sequence[SE3],
    iterations: Sequence[int],
    times_ms: Sequence[float],
) -> list[Path]:
    """Write the four result files of a run.

    Files are ``<prefix>_poses.txt``, ``<prefix>_path.txt``,
    ``<prefix>_iterations.txt`` and ``<prefix>_time.txt``.

    Args:
        prefix: Output path prefix
        trajectory: World pose of every frame
        iterations: Iteration count at the test level of every frame
        times_ms: Processing time of every frame in milliseconds

    Returns:
        Paths of the written files

    Raises:
        ValueError: If the sequences differ in length
    """
    if not (len(trajectory) == len(iterations) == len(times_ms)):
        raise ValueError(
            f"Length mismatch: {len(trajectory)} poses, {len(iterations)} "
            f"iteration counts, {len(times_ms)} timings"
        )

    prefix = str(prefix)
    paths = [
        Path(prefix + "_poses.txt"),
        Path(prefix + "_path.txt"),
        Path(prefix + "_iterations.txt"),
        Path(prefix + "_time.txt"),
    ]
    paths[0].parent.mkdir(parents=True, exist_ok=True)

    write_poses(paths[0], trajectory)
    write_camera_path(paths[1], trajectory)
    write_values(paths[2], iterations, fmt="%d")
    write_values(paths[3], times_ms, fmt="%.3f")
    return paths
