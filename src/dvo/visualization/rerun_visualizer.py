"""Rerun-based visualization for direct stereo visual odometry."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import rerun as rr
import rerun.blueprint as rrb

if TYPE_CHECKING:
    from ..frontend.camera import StereoCalibration
    from ..frontend.frame import Frame
    from ..odometry import Result


class RerunVisualizer:
    """Rerun-based visualization for direct visual odometry.

    Entity hierarchy:
        camera/
            image       - Intensity image of the current frame
            depth       - Depth computed from the disparity map
        world/
            camera      - Current camera pose with pinhole model
            trajectory  - Estimated camera path
            keyframes   - Positions where keyframes were created
    """

    def __init__(self, app_name: str = "python-dvo", spawn: bool = True) -> None:
        """Initialize Rerun visualization.

        Args:
            app_name: Name for the Rerun application window
            spawn: If True, automatically spawn the Rerun viewer
        """
        rr.init(app_name, spawn=spawn)
        self._positions: list[np.ndarray] = []
        self._keyframe_positions: list[np.ndarray] = []
        self._setup_coordinate_system()
        self._setup_layout()

    def _setup_coordinate_system(self) -> None:
        """Camera convention: X-right, Y-down, Z-forward."""
        rr.log("world", rr.ViewCoordinates.RDF, static=True)

    def _setup_layout(self) -> None:
        blueprint = rrb.Blueprint(
            rrb.Vertical(
                contents=[
                    rrb.Horizontal(
                        contents=[
                            rrb.Spatial2DView(name="Image", origin="camera/image"),
                            rrb.Spatial2DView(name="Depth", origin="camera/depth"),
                        ]
                    ),
                    rrb.Spatial3DView(name="Trajectory", origin="world"),
                ]
            )
        )
        rr.send_blueprint(blueprint)

    def log_calibration(self, calibration: StereoCalibration, width: int, height: int) -> None:
        """Log the pinhole model of the camera once."""
        rr.log(
            "world/camera",
            rr.Pinhole(image_from_camera=calibration.K, resolution=[width, height]),
            static=True,
        )

    def log_frame(self, frame: Frame, calibration: StereoCalibration) -> None:
        """Log intensity and depth images of a frame."""
        rr.log("camera/image", rr.Image(frame.image.astype(np.uint8)))
        depth = np.nan_to_num(
            calibration.disparity_to_depth(frame.disparity), nan=0.0, posinf=0.0
        )
        rr.log("camera/depth", rr.DepthImage(depth.astype(np.float32), meter=1.0))

    def log_result(
        self,
        result: Result,
        frame: Frame | None = None,
        calibration: StereoCalibration | None = None,
    ) -> None:
        """Log the outcome of one add_frame call.

        Args:
            result: Odometry result of the frame
            frame: Frame that produced the result (images are logged if given)
            calibration: Needed with frame to convert disparity to depth
        """
        rr.set_time("frame", sequence=result.frame_id)

        if frame is not None and calibration is not None:
            self.log_frame(frame, calibration)

        pose = result.world_pose
        self.log_camera_pose(pose.position, pose.rotation)

        self._positions.append(pose.position)
        self.log_trajectory(np.array(self._positions))

        if result.is_keyframe:
            self._keyframe_positions.append(pose.position)
            rr.log(
                "world/keyframes",
                rr.Points3D(
                    np.array(self._keyframe_positions),
                    colors=[[255, 0, 255]],  # Magenta
                    radii=0.03,
                ),
            )

        total_iterations = sum(s.num_iterations for s in result.optimizer_statistics)
        rr.log("stats/iterations", rr.Scalars(float(total_iterations)))

    def log_camera_pose(
        self,
        position: np.ndarray,
        rotation: np.ndarray,
        entity_path: str = "world/camera",
    ) -> None:
        """Log camera pose as a 3D transform.

        Args:
            position: 3D position [x, y, z]
            rotation: 3x3 rotation matrix
            entity_path: Rerun entity path for the camera
        """
        rr.log(entity_path, rr.Transform3D(translation=position, mat3x3=rotation))

    def log_trajectory(
        self,
        positions: np.ndarray,
        entity_path: str = "world/trajectory",
    ) -> None:
        """Log camera trajectory as a 3D line strip.

        Args:
            positions: Nx3 array of camera positions in world frame
            entity_path: Rerun entity path for the trajectory
        """
        if len(positions) < 2:
            return

        rr.log(
            entity_path,
            rr.LineStrips3D([positions], colors=[[255, 255, 0]], radii=0.005),
        )

    def reset(self) -> None:
        """Forget the accumulated positions."""
        self._positions.clear()
        self._keyframe_positions.clear()
