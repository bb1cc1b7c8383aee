"""Algorithm parameters for the odometry engine.

Parameters are loaded once per run (usually from a YAML file) and are
read-only afterwards. Every value is validated at load time so that a bad
configuration fails before any frame is processed.

Example YAML::

    algorithm:
      num_levels: 4
      max_iterations: 50
      max_test_level: 0
      loss: huber
      max_translation: 0.1
      max_rotation: 5.0
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError


class LossFunction(Enum):
    """Robust loss applied to the photometric residuals."""

    L2 = "l2"
    HUBER = "huber"
    TUKEY = "tukey"


@dataclass(frozen=True)
class AlgorithmParameters:
    """Configuration of the pyramid, optimizer and keyframe selector.

    Attributes:
        num_levels: Number of pyramid levels (level 0 is full resolution)
        max_iterations: Iteration cap per pyramid level
        max_test_level: Finest level that is optimized. Its iteration count
            is the one inspected for the max-iterations warning.
        parameter_tolerance: Convergence threshold on the increment norm
        function_tolerance: Convergence threshold on the relative cost decrease
        loss: Robust loss function
        huber_threshold: Huber constant (in units of the residual scale)
        tukey_threshold: Tukey constant (in units of the residual scale)
        min_scale: Lower bound of the robust residual scale estimate
        damping: Diagonal damping added to the normal equations
        max_condition_number: Systems worse than this count as ill-conditioned
        min_valid_points: Fewest valid residuals needed to solve a level
        min_gradient_magnitude: Saliency threshold for template pixels
        min_disparity: Smallest usable disparity (full-resolution pixels)
        max_points_per_level: Template size cap, 0 for unlimited
        occlusion_threshold: Disparity disagreement (full-resolution pixels)
            that marks a warped point occluded, <= 0 disables the test
        good_point_threshold: Robust weight above which a point counts as good
        max_translation: Keyframe when translation exceeds this (meters)
        max_rotation: Keyframe when rotation exceeds this (degrees)
        min_tracking_quality: Keyframe when the good-point fraction at the
            finest optimized level drops below this
        keyframe_on_max_iterations: Keyframe when the finest optimized level
            hits the iteration cap
        num_threads: Worker threads for normal equation accumulation
        accumulation_chunk_size: Points per accumulation chunk
    """

    num_levels: int = 4
    max_iterations: int = 50
    max_test_level: int = 0
    parameter_tolerance: float = 1e-6
    function_tolerance: float = 1e-6
    loss: LossFunction = LossFunction.HUBER
    huber_threshold: float = 1.345
    tukey_threshold: float = 4.6851
    min_scale: float = 1e-6
    damping: float = 1e-8
    max_condition_number: float = 1e12
    min_valid_points: int = 12
    min_gradient_magnitude: float = 1.0
    min_disparity: float = 1e-3
    max_points_per_level: int = 0
    occlusion_threshold: float = 2.0
    good_point_threshold: float = 0.5
    max_translation: float = 0.1
    max_rotation: float = 5.0
    min_tracking_quality: float = 0.5
    keyframe_on_max_iterations: bool = True
    num_threads: int = 1
    accumulation_chunk_size: int = 4096

    def __post_init__(self) -> None:
        """Coerce the loss to its enum and validate all values."""
        if not isinstance(self.loss, LossFunction):
            try:
                loss = LossFunction(str(self.loss).lower())
            except ValueError as e:
                choices = ", ".join(item.value for item in LossFunction)
                raise ConfigurationError(
                    f"Unknown loss '{self.loss}', expected one of: {choices}"
                ) from e
            object.__setattr__(self, "loss", loss)
        self.validate()

    def validate(self) -> None:
        """Check every parameter.

        Raises:
            ConfigurationError: If any value is out of range or an integer
                parameter has another type
        """
        for name in (
            "num_levels",
            "max_iterations",
            "max_test_level",
            "min_valid_points",
            "max_points_per_level",
            "num_threads",
            "accumulation_chunk_size",
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(
                    f"{name} must be an integer, got {value!r}"
                )

        if self.num_levels < 1:
            raise ConfigurationError(
                f"num_levels must be positive, got {self.num_levels}"
            )
        if self.max_iterations < 1:
            raise ConfigurationError(
                f"max_iterations must be positive, got {self.max_iterations}"
            )
        if not 0 <= self.max_test_level < self.num_levels:
            raise ConfigurationError(
                f"max_test_level must be in [0, {self.num_levels - 1}], "
                f"got {self.max_test_level}"
            )

        for name in (
            "parameter_tolerance",
            "function_tolerance",
            "min_scale",
            "damping",
            "min_gradient_magnitude",
            "min_disparity",
            "max_translation",
            "max_rotation",
        ):
            if getattr(self, name) < 0:
                raise ConfigurationError(
                    f"{name} must be non-negative, got {getattr(self, name)}"
                )

        if self.huber_threshold <= 0 or self.tukey_threshold <= 0:
            raise ConfigurationError("Robust loss thresholds must be positive")
        if self.max_condition_number <= 1:
            raise ConfigurationError(
                f"max_condition_number must exceed 1, got {self.max_condition_number}"
            )
        if self.min_valid_points < 6:
            # A 6-DOF update needs at least six constraints
            raise ConfigurationError(
                f"min_valid_points must be at least 6, got {self.min_valid_points}"
            )
        if self.max_points_per_level < 0:
            raise ConfigurationError(
                f"max_points_per_level must be non-negative, "
                f"got {self.max_points_per_level}"
            )
        if not 0.0 <= self.good_point_threshold <= 1.0:
            raise ConfigurationError(
                f"good_point_threshold must be in [0, 1], "
                f"got {self.good_point_threshold}"
            )
        if not 0.0 <= self.min_tracking_quality <= 1.0:
            raise ConfigurationError(
                f"min_tracking_quality must be in [0, 1], "
                f"got {self.min_tracking_quality}"
            )
        if self.num_threads < 1:
            raise ConfigurationError(
                f"num_threads must be positive, got {self.num_threads}"
            )
        if self.accumulation_chunk_size < 1:
            raise ConfigurationError(
                f"accumulation_chunk_size must be positive, "
                f"got {self.accumulation_chunk_size}"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlgorithmParameters:
        """Create parameters from a mapping of field names to values.

        Args:
            data: Parameter mapping. If it contains an ``algorithm`` section,
                only that section is used.

        Returns:
            Validated AlgorithmParameters

        Raises:
            ConfigurationError: On unknown keys or invalid values
        """
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration must be a mapping, got {type(data).__name__}"
            )
        if "algorithm" in data:
            data = data["algorithm"] or {}

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown algorithm parameters: {', '.join(unknown)}"
            )

        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid algorithm parameters: {e}") from e

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> AlgorithmParameters:
        """Load parameters from a YAML file.

        Args:
            yaml_path: Path to the configuration file

        Returns:
            Validated AlgorithmParameters

        Raises:
            FileNotFoundError: If the file doesn't exist
            ConfigurationError: If the file content is invalid
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(path, "r") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {yaml_path}: {e}") from e

        return cls.from_dict(data)

    def with_overrides(self, **changes: Any) -> AlgorithmParameters:
        """Return a copy with some fields replaced (validated again)."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Return a YAML-friendly mapping of all parameters."""
        data = asdict(self)
        data["loss"] = self.loss.value
        return data
