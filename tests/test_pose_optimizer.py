"""Tests for coarse-to-fine photometric pose optimization."""

import dataclasses

import numpy as np
import pytest

from dvo.backend.keyframe import Keyframe
from dvo.frontend.pose import SE3
from dvo.frontend.pyramid import build_pyramid
from dvo.tracking.pose_optimizer import (
    PoseOptimizer,
    TerminationReason,
    bilinear_sample,
    warp_template,
)
from dvo.tracking.template import build_template, photometric_jacobians


def make_pyramid(frame, calibration, params):
    return build_pyramid(frame.image, frame.disparity, params.num_levels, calibration)


@pytest.fixture
def keyframe(make_sequence, calibration, params):
    frame = make_sequence([SE3.identity()]).next_frame()
    return Keyframe.from_pyramid(0, make_pyramid(frame, calibration, params), params)


class TestBilinearSample:
    """Test suite for sub-pixel sampling."""

    def test_integer_positions(self):
        image = np.arange(12, dtype=np.float64).reshape(3, 4)

        u = np.array([0.0, 3.0, 2.0])
        v = np.array([0.0, 2.0, 1.0])
        values = bilinear_sample(image, u, v)

        np.testing.assert_allclose(values, [0.0, 11.0, 6.0])

    def test_interpolates_linearly(self):
        image = np.arange(12, dtype=np.float64).reshape(3, 4)

        values = bilinear_sample(image, np.array([0.5, 1.25]), np.array([0.5, 1.5]))

        np.testing.assert_allclose(values, [2.5, 7.25])


class TestTemplate:
    """Test suite for keyframe template construction."""

    def test_points_reproject_to_their_pixels(self, keyframe):
        """Test that template points project back onto their source pixels."""
        for template in keyframe.templates:
            pixels, in_front = template.calibration.project(template.points)
            assert in_front.all()
            np.testing.assert_allclose(pixels, template.pixels, atol=1e-9)

    def test_point_cap(self, make_sequence, calibration, params):
        """Test that max_points_per_level keeps only the strongest gradients."""
        capped = params.with_overrides(max_points_per_level=200)
        frame = make_sequence([SE3.identity()]).next_frame()
        level = make_pyramid(frame, calibration, capped)[0]

        template = build_template(level, capped)

        assert template.num_points == 200

    def test_jacobian_matches_finite_differences(self, keyframe):
        """Test the analytic Jacobian against numeric differentiation."""
        level = keyframe.pyramid[0]
        template = keyframe.template(0)
        idx = np.arange(0, template.num_points, max(template.num_points // 50, 1))
        points = template.points[idx]

        J = photometric_jacobians(
            points,
            np.ones(len(points)),
            np.zeros(len(points)),
            level.calibration,
        )

        # With a unit x-gradient the Jacobian is du/dxi
        eps = 1e-6
        for k in range(6):
            xi = np.zeros(6)
            xi[k] = eps
            plus, _ = level.calibration.project(SE3.exp(xi).transform_points(points))
            minus, _ = level.calibration.project(SE3.exp(-xi).transform_points(points))
            numeric = (plus[:, 0] - minus[:, 0]) / (2 * eps)
            np.testing.assert_allclose(J[:, k], numeric, rtol=1e-4, atol=1e-4)


class TestPoseOptimizer:
    """Test suite for PoseOptimizer."""

    def test_identical_frame_converges_immediately(self, keyframe, params):
        """Test that the keyframe's own pyramid converges to identity in one iteration."""
        optimizer = PoseOptimizer(params)

        pose, statistics = optimizer.optimize(keyframe, keyframe.pyramid, SE3.identity())

        assert len(statistics) == params.num_levels
        np.testing.assert_allclose(pose.to_matrix(), np.eye(4), atol=1e-9)
        for stats in statistics:
            assert stats.num_iterations <= 1
            assert stats.converged
            assert stats.termination is TerminationReason.ZERO_RESIDUAL

    def test_recovers_translation(self, keyframe, make_sequence, calibration, params):
        """Test that a known camera translation is recovered."""
        t = np.array([0.02, -0.01, 0.015])
        frame = make_sequence([SE3.from_translation(t)]).next_frame()
        optimizer = PoseOptimizer(params)

        pose, statistics = optimizer.optimize(
            keyframe, make_pyramid(frame, calibration, params), SE3.identity()
        )

        np.testing.assert_allclose(pose.translation, t, atol=3e-3)
        assert pose.rotation_angle < np.deg2rad(0.3)
        assert statistics[0].converged
        assert statistics[0].good_fraction > 0.5

    def test_recovers_rotation(self, keyframe, make_sequence, calibration, params):
        """Test that a small camera rotation is recovered."""
        true_pose = SE3.exp(np.array([0.0, 0.0, 0.0, 0.004, -0.006, 0.01]))
        frame = make_sequence([true_pose]).next_frame()
        optimizer = PoseOptimizer(params)

        pose, _ = optimizer.optimize(
            keyframe, make_pyramid(frame, calibration, params), SE3.identity()
        )

        np.testing.assert_allclose(pose.log(), true_pose.log(), atol=3e-3)

    def test_iteration_cap_means_not_converged(
        self, keyframe, make_sequence, calibration, params
    ):
        """Test that hitting max_iterations reports converged=False."""
        capped = params.with_overrides(max_iterations=1)
        frame = make_sequence([SE3.from_translation([0.02, 0.0, 0.0])]).next_frame()
        optimizer = PoseOptimizer(capped)

        _, statistics = optimizer.optimize(
            keyframe, make_pyramid(frame, calibration, capped), SE3.identity()
        )

        for stats in statistics:
            assert stats.num_iterations == 1
            assert not stats.converged

    def test_levels_below_test_level_are_skipped(self, make_sequence, calibration, params):
        """Test that levels finer than max_test_level are not optimized."""
        coarse = params.with_overrides(max_test_level=1)
        frame = make_sequence([SE3.identity()]).next_frame()
        pyramid = make_pyramid(frame, calibration, coarse)
        keyframe = Keyframe.from_pyramid(0, pyramid, coarse)

        _, statistics = PoseOptimizer(coarse).optimize(keyframe, pyramid, SE3.identity())

        assert statistics[0].termination is TerminationReason.SKIPPED
        assert statistics[0].num_iterations == 0
        assert statistics[0].converged
        assert statistics[1].termination is TerminationReason.ZERO_RESIDUAL

    def test_too_few_points_is_ill_conditioned(self, keyframe, params):
        """Test that a level without enough valid residuals stops without solving."""
        strict = params.with_overrides(min_valid_points=10**7)

        optimizer = PoseOptimizer(strict)
        _, stats = optimizer.estimate(keyframe, keyframe.pyramid[0], SE3.identity())

        assert stats.termination is TerminationReason.ILL_CONDITIONED
        assert not stats.converged

    def test_ill_conditioned_coarse_level_continues_to_finer_levels(
        self, keyframe, make_sequence, calibration, params
    ):
        """Test that a degenerate coarsest level does not stop the finer levels."""
        coarsest = params.num_levels - 1
        full = keyframe.template(coarsest)
        sparse = dataclasses.replace(
            full,
            pixels=full.pixels[:4],
            points=full.points[:4],
            intensities=full.intensities[:4],
            jacobians=full.jacobians[:4],
        )
        templates = keyframe.templates[:coarsest] + (sparse,)
        degenerate = dataclasses.replace(keyframe, templates=templates)

        t = np.array([0.01, 0.0, 0.0])
        frame = make_sequence([SE3.from_translation(t)]).next_frame()
        pose, statistics = PoseOptimizer(params).optimize(
            degenerate, make_pyramid(frame, calibration, params), SE3.identity()
        )

        assert statistics[coarsest].termination is TerminationReason.ILL_CONDITIONED
        assert not statistics[coarsest].converged
        for stats in statistics[:coarsest]:
            assert stats.num_iterations > 0
            assert stats.termination is not TerminationReason.SKIPPED
        assert statistics[0].converged
        np.testing.assert_allclose(pose.translation, t, atol=3e-3)

    def test_threaded_accumulation_matches_serial(
        self, keyframe, make_sequence, calibration, params
    ):
        """Test that a thread pool gives the same estimate as a single thread."""
        from concurrent.futures import ThreadPoolExecutor

        chunked = params.with_overrides(accumulation_chunk_size=256)
        frame = make_sequence([SE3.from_translation([0.01, 0.0, 0.0])]).next_frame()
        pyramid = make_pyramid(frame, calibration, chunked)

        serial_pose, _ = PoseOptimizer(chunked).optimize(keyframe, pyramid, SE3.identity())
        with ThreadPoolExecutor(max_workers=3) as executor:
            parallel_pose, _ = PoseOptimizer(chunked, executor).optimize(
                keyframe, pyramid, SE3.identity()
            )

        np.testing.assert_array_equal(serial_pose.to_matrix(), parallel_pose.to_matrix())


class TestWarpTemplate:
    """Test suite for residual evaluation."""

    def test_identity_warp_has_zero_residuals(self, keyframe):
        template = keyframe.template(0)

        evaluation = warp_template(template, keyframe.pyramid[0], SE3.identity())

        assert evaluation.num_valid == template.num_points
        assert evaluation.rms < 1e-6

    def test_points_leaving_the_image_are_dropped(self, keyframe):
        """Test that a large shift invalidates points that fall outside."""
        template = keyframe.template(0)

        evaluation = warp_template(
            template, keyframe.pyramid[0], SE3.from_translation([0.5, 0.0, 0.0])
        )

        assert 0 < evaluation.num_valid < template.num_points

    def test_occlusion_gating(self, keyframe):
        """Test that points whose predicted disparity disagrees are rejected."""
        template = keyframe.template(0)
        level = keyframe.pyramid[0]
        # Moving forward 30 cm changes every predicted disparity by > 1 px
        T = SE3.from_translation([0.0, 0.0, -0.3])

        gated = warp_template(template, level, T, occlusion_threshold=1.0)
        ungated = warp_template(template, level, T, occlusion_threshold=0.0)

        assert gated.num_valid < ungated.num_valid
