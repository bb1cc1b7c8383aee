"""I/O utilities: calibration, frame sources and trajectory export."""

from .calibration import load_calibration, parse_calibration
from .dataset_reader import DatasetReader
from .frame_source import FrameSource
from .synthetic import PlaneScene, SyntheticSequence
from .trajectory_writer import write_camera_path, write_poses, write_results, write_values

__all__ = [
    "load_calibration",
    "parse_calibration",
    "DatasetReader",
    "FrameSource",
    "PlaneScene",
    "SyntheticSequence",
    "write_poses",
    "write_camera_path",
    "write_values",
    "write_results",
]
