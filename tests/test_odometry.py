"""Tests for the VisualOdometry controller."""

import logging

import numpy as np
import pytest

from dvo.backend.keyframe import KeyframingReason
from dvo.errors import InvalidInputError
from dvo.frontend.frame import Frame, ImageSize
from dvo.frontend.pose import SE3
from dvo.odometry import OdometryState, VisualOdometry
from dvo.tracking.pose_optimizer import TerminationReason


@pytest.fixture
def vo(calibration, image_size, params):
    with VisualOdometry(calibration, image_size, params) as odometry:
        yield odometry


class TestVisualOdometry:
    """Test suite for VisualOdometry."""

    def test_first_frame(self, vo, translating_sequence, params):
        """Test that the first frame seeds the keyframe without optimizing."""
        assert vo.state is OdometryState.UNINITIALIZED

        result = vo.add_frame(translating_sequence.next_frame())

        assert result.frame_id == 0
        assert result.keyframing_reason is KeyframingReason.FIRST_FRAME
        assert result.is_keyframe
        np.testing.assert_allclose(result.pose.to_matrix(), np.eye(4))
        assert len(result.optimizer_statistics) == params.num_levels
        for stats in result.optimizer_statistics:
            assert stats.num_iterations == 0
            assert stats.converged
            assert stats.termination is TerminationReason.SKIPPED
        assert vo.state is OdometryState.TRACKING
        assert vo.active_keyframe is not None

    def test_identical_frame_is_identity(self, vo, make_sequence):
        """Test that re-submitting the keyframe image converges in one iteration."""
        frame = make_sequence([SE3.identity()]).next_frame()
        vo.add_frame(frame)

        result = vo.add_frame(frame)

        np.testing.assert_allclose(result.pose.to_matrix(), np.eye(4), atol=1e-9)
        assert result.keyframing_reason is KeyframingReason.KEEP_OLD_KEYFRAME
        for stats in result.optimizer_statistics:
            assert stats.num_iterations <= 1
            assert stats.converged

    def test_translating_sequence(
        self, calibration, image_size, params, translating_sequence
    ):
        """Test recovery of known translations and threshold keyframing."""
        params = params.with_overrides(max_translation=0.025, min_tracking_quality=0.25)
        expected = translating_sequence.poses

        with VisualOdometry(calibration, image_size, params) as vo:
            results = [vo.add_frame(frame) for frame in translating_sequence]

        for result, truth in zip(results, expected):
            np.testing.assert_allclose(
                result.world_pose.translation, truth.translation, atol=2e-3
            )
            assert len(result.optimizer_statistics) == params.num_levels

        # Only frame 3 (3 cm from frame 0) exceeds 2.5 cm
        assert [r.keyframing_reason for r in results] == [
            KeyframingReason.FIRST_FRAME,
            KeyframingReason.KEEP_OLD_KEYFRAME,
            KeyframingReason.KEEP_OLD_KEYFRAME,
            KeyframingReason.MAX_TRANSLATION,
            KeyframingReason.KEEP_OLD_KEYFRAME,
        ]
        # Frame 4 is tracked against frame 3
        np.testing.assert_allclose(results[4].pose.translation, [0.01, 0.0, 0.0], atol=2e-3)

    def test_trajectory_matches_call_count(self, vo, translating_sequence):
        for frame in translating_sequence:
            vo.add_frame(frame)

        assert len(vo.trajectory) == len(translating_sequence)
        assert vo.num_frames == len(translating_sequence)
        assert vo.get_trajectory_positions().shape == (len(translating_sequence), 3)
        assert vo.current_pose is vo.trajectory.last

    def test_keep_preserves_keyframe_object(self, vo, translating_sequence):
        vo.add_frame(translating_sequence.next_frame())
        keyframe = vo.active_keyframe

        result = vo.add_frame(translating_sequence.next_frame())

        assert result.keyframing_reason is KeyframingReason.KEEP_OLD_KEYFRAME
        assert vo.active_keyframe is keyframe

    def test_max_iterations_warning(
        self, calibration, image_size, params, make_sequence, caplog
    ):
        """Test that hitting the cap at the test level is logged and flagged."""
        params = params.with_overrides(max_iterations=1, keyframe_on_max_iterations=False)
        frame = make_sequence([SE3.identity()]).next_frame()
        logger = logging.getLogger("dvo.test")

        with VisualOdometry(calibration, image_size, params, logger=logger) as vo:
            vo.add_frame(frame)
            with caplog.at_level(logging.WARNING, logger="dvo.test"):
                result = vo.add_frame(frame)

        assert result.max_iterations_reached
        assert not result.optimizer_statistics[params.max_test_level].converged
        assert "max iterations reached at frame 1" in caplog.text

    def test_invalid_frame_leaves_state_unchanged(self, vo, translating_sequence):
        """Test that a malformed frame raises without touching the engine."""
        with pytest.raises(InvalidInputError):
            vo.add_frame(np.zeros((10, 10)), np.zeros((10, 10)))

        assert vo.state is OdometryState.UNINITIALIZED
        assert vo.num_frames == 0
        assert len(vo.trajectory) == 0

        vo.add_frame(translating_sequence.next_frame())
        keyframe = vo.active_keyframe

        with pytest.raises(InvalidInputError):
            vo.add_frame(Frame(image=np.zeros((12, 16)), disparity=np.zeros((12, 16))))
        with pytest.raises(InvalidInputError):
            vo.add_frame(np.zeros(160 * 120))

        assert vo.num_frames == 1
        assert vo.active_keyframe is keyframe
        assert len(vo.trajectory) == 1

    def test_flat_buffers(self, vo, translating_sequence, image_size):
        """Test that row-major buffers are accepted."""
        frame = translating_sequence.next_frame()

        result = vo.add_frame(frame.image.ravel(), frame.disparity.ravel())

        assert result.is_keyframe
        assert vo.image_size == image_size

    def test_image_too_small_for_pyramid(self, calibration, params):
        with pytest.raises(InvalidInputError, match="too small"):
            VisualOdometry(calibration, ImageSize(width=6, height=6), params)

    def test_reset(self, vo, translating_sequence):
        for frame in translating_sequence:
            vo.add_frame(frame)

        vo.reset()

        assert vo.state is OdometryState.UNINITIALIZED
        assert vo.num_frames == 0
        assert vo.num_keyframes == 0
        assert vo.active_keyframe is None
        assert len(vo.trajectory) == 0

    def test_multithreaded_matches_single_thread(
        self, calibration, image_size, params, translating_sequence
    ):
        """Test that num_threads does not change the estimates."""
        params = params.with_overrides(accumulation_chunk_size=512)
        poses = {}
        for threads in (1, 3):
            with VisualOdometry(
                calibration, image_size, params.with_overrides(num_threads=threads)
            ) as vo:
                poses[threads] = [vo.add_frame(f).world_pose for f in translating_sequence]

        for single, multi in zip(poses[1], poses[3]):
            np.testing.assert_array_equal(single.to_matrix(), multi.to_matrix())

    def test_add_frame_after_close(
        self, calibration, image_size, params, translating_sequence
    ):
        """Test that a closed multithreaded engine keeps tracking serially."""
        params = params.with_overrides(num_threads=2, accumulation_chunk_size=256)
        vo = VisualOdometry(calibration, image_size, params)
        vo.add_frame(translating_sequence.next_frame())
        vo.close()

        result = vo.add_frame(translating_sequence.next_frame())

        assert vo.num_frames == 2
        np.testing.assert_allclose(
            result.world_pose.translation,
            translating_sequence.poses[1].translation,
            atol=2e-3,
        )
        vo.close()

    def test_timing(self, vo, translating_sequence):
        vo.add_frame(translating_sequence.next_frame())
        result = vo.add_frame(translating_sequence.next_frame())

        assert result.timing.total_ms > 0
        assert result.timing.optimization_ms > 0
