"""Unit tests for the dual-filter pose estimator.

The scan matcher is replaced by a recording stub so that every test
controls the matched pose exactly and can inspect the initial guess the
estimator produced.
"""

import warnings

import numpy as np
import pytest

import scanloc.localization.pose_estimator as pose_estimator_module
from scanloc.coords.rotations import euler_to_quat, quat_normalize
from scanloc.coords.transforms import pose_to_matrix, transform_points, translation_transform
from scanloc.localization import (
    EstimatorMode,
    OdometryActive,
    OdometryInactive,
    PoseEstimator,
    PoseEstimatorConfig,
)
from scanloc.slam import RegistrationResult, ScanMatchError
from scanloc.utils.linalg import DegenerateCovarianceError


IDENTITY_QUAT = np.array([1.0, 0.0, 0.0, 0.0])
POSE_INDICES = [0, 1, 2, 6, 7, 8, 9]
ZERO3 = np.zeros(3)


class RecordingMatcher:
    """Scan matcher stub returning a fixed transform and recording guesses."""

    def __init__(self, transform=None, converged=True):
        self.transform = np.eye(4) if transform is None else transform
        self.converged = converged
        self.guesses = []

    def align(self, cloud, initial_guess):
        self.guesses.append(np.array(initial_guess, copy=True))
        return RegistrationResult(
            aligned=transform_points(self.transform, cloud),
            transform=self.transform,
            converged=self.converged,
            fitness=0.0 if self.converged else 1.0,
            iterations=1,
        )


@pytest.fixture
def cloud():
    return np.random.default_rng(7).normal(size=(20, 3))


@pytest.fixture
def matcher():
    return RecordingMatcher()


def _estimator(matcher, position=ZERO3, quat=IDENTITY_QUAT, cool_time=0.0, **config_kwargs):
    config = PoseEstimatorConfig(**config_kwargs) if config_kwargs else None
    return PoseEstimator(
        matcher, 0.0, position, quat, cool_time_duration=cool_time, config=config
    )


class TestConstruction:
    """Test suite for the initial state of a new estimator."""

    def test_initial_pose_and_mode(self, matcher):
        quat = euler_to_quat(0.0, 0.0, 0.5)
        est = PoseEstimator(matcher, 3.0, np.array([1.0, 2.0, 3.0]), quat)

        assert est.mode is EstimatorMode.INERTIAL_ONLY
        assert isinstance(est._odometry, OdometryInactive)
        np.testing.assert_allclose(est.position(), [1.0, 2.0, 3.0])
        np.testing.assert_allclose(est.velocity(), ZERO3)
        np.testing.assert_allclose(est.orientation(), quat)
        assert est.init_stamp == 3.0
        assert est.prev_stamp is None
        assert est.last_correction_time is None
        assert est.cool_time_duration == 1.0

    def test_initial_covariance(self, matcher):
        est = _estimator(matcher, initial_cov=0.05, cool_time_duration=0.0)
        np.testing.assert_allclose(est.inertial_covariance(), np.eye(16) * 0.05)

    def test_quaternion_is_normalized(self, matcher):
        est = _estimator(matcher, quat=np.array([2.0, 0.0, 0.0, 0.0]))
        np.testing.assert_allclose(est.orientation(), IDENTITY_QUAT)

    def test_cool_time_argument_overrides_config(self, matcher):
        config = PoseEstimatorConfig(cool_time_duration=5.0)
        est = PoseEstimator(matcher, 0.0, ZERO3, IDENTITY_QUAT, cool_time_duration=0.2, config=config)
        assert est.cool_time_duration == 0.2
        assert est.config.cool_time_duration == 0.2
        assert config.cool_time_duration == 5.0

    def test_registration_handle_is_shared(self, matcher):
        est = _estimator(matcher)
        assert est.registration is matcher

    def test_rejects_non_matcher(self):
        with pytest.raises(TypeError):
            PoseEstimator(object(), 0.0, ZERO3, IDENTITY_QUAT)

    def test_rejects_bad_pose(self, matcher):
        with pytest.raises(ValueError):
            PoseEstimator(matcher, 0.0, np.zeros(2), IDENTITY_QUAT)
        with pytest.raises(ValueError):
            PoseEstimator(matcher, 0.0, ZERO3, np.zeros(4))

    def test_odometry_accessors_require_active_filter(self, matcher):
        est = _estimator(matcher)
        for accessor in (
            est.odometry_position,
            est.odometry_orientation,
            est.odometry_pose_transform,
            est.odometry_covariance,
        ):
            with pytest.raises(RuntimeError):
                accessor()


class TestPredictGating:
    """Test suite for when an inertial sample actually propagates the filter."""

    def test_cool_time_suppresses_prediction(self, matcher):
        est = PoseEstimator(matcher, 10.0, ZERO3, IDENTITY_QUAT, cool_time_duration=1.0)
        x_before, P_before = est._ukf.get_state()

        for k in range(1, 10):
            est.predict(10.0 + 0.1 * k, np.array([1.0, 0.0, 0.0]), ZERO3)

        np.testing.assert_array_equal(est._ukf.state, x_before)
        np.testing.assert_array_equal(est._ukf.covariance, P_before)
        assert est.prev_stamp == pytest.approx(10.9)

    def test_prediction_resumes_after_cool_time(self, matcher):
        est = PoseEstimator(matcher, 10.0, ZERO3, IDENTITY_QUAT, cool_time_duration=1.0)
        est.predict(10.5, ZERO3, ZERO3)
        P_before = est.inertial_covariance()

        est.predict(11.2, ZERO3, ZERO3)

        # Process noise of a 0.7 s step was added
        assert est.inertial_covariance()[0, 0] > P_before[0, 0] + 0.5
        assert est.prev_stamp == 11.2

    def test_first_sample_only_records_stamp(self, matcher):
        est = _estimator(matcher)
        est.predict(0.1, np.array([1.0, 0.0, 0.0]), ZERO3)
        np.testing.assert_array_equal(est.velocity(), ZERO3)
        assert est.prev_stamp == 0.1

    def test_non_increasing_stamps_are_ignored(self, matcher):
        est = _estimator(matcher)
        est.predict(0.1, ZERO3, ZERO3)
        est.predict(0.2, ZERO3, ZERO3)
        x_before, P_before = est._ukf.get_state()

        est.predict(0.2, np.array([1.0, 0.0, 0.0]), ZERO3)
        est.predict(0.15, np.array([1.0, 0.0, 0.0]), ZERO3)

        np.testing.assert_array_equal(est._ukf.state, x_before)
        np.testing.assert_array_equal(est._ukf.covariance, P_before)
        # The latest stamp is still recorded, even when it went backwards
        assert est.prev_stamp == 0.15

    def test_dt_measured_from_last_seen_stamp(self, matcher):
        est = _estimator(matcher)
        est.predict(0.1, ZERO3, ZERO3)
        est.predict(0.05, ZERO3, ZERO3)
        P_before = est.inertial_covariance()

        est.predict(0.25, ZERO3, ZERO3)

        # Position process noise is 1.0 * dt with dt = 0.25 - 0.05
        increase = est.inertial_covariance()[0, 0] - P_before[0, 0]
        assert increase == pytest.approx(0.2, abs=0.05)

    def test_bad_sample_shape(self, matcher):
        est = _estimator(matcher)
        with pytest.raises(ValueError):
            est.predict(0.1, np.zeros(2), ZERO3)
        with pytest.raises(ValueError):
            est.predict(0.1, ZERO3, np.zeros(4))


class TestInertialPropagation:
    """Test suite for inertial-only propagation."""

    def test_zero_motion_stays_put(self, matcher):
        est = _estimator(matcher, position=np.array([1.0, 2.0, 3.0]))
        for k in range(101):
            est.predict(0.01 * k, ZERO3, ZERO3)

        np.testing.assert_allclose(est.position(), [1.0, 2.0, 3.0], atol=1e-4)
        np.testing.assert_allclose(est.velocity(), ZERO3, atol=1e-4)
        assert abs(np.dot(est.orientation(), IDENTITY_QUAT)) == pytest.approx(1.0, abs=1e-4)

    def test_acceleration_moves_along_body_axis(self, matcher):
        est = _estimator(matcher)
        for k in range(51):
            est.predict(0.01 * k, np.array([1.0, 0.0, 0.0]), ZERO3)

        position = est.position()
        assert 0.0 < position[0] <= 0.125 + 1e-9
        assert abs(position[1]) < 1e-6
        assert abs(position[2]) < 1e-6
        assert est.velocity()[0] > 0.0

    def test_covariance_grows_without_corrections(self, matcher):
        est = _estimator(matcher)
        traces = []
        for k in range(5):
            est.predict(0.1 * k, ZERO3, ZERO3)
            traces.append(np.trace(est.inertial_covariance()))
        assert all(b > a for a, b in zip(traces[1:], traces[2:]))


class TestOdometryMode:
    """Test suite for the inertial-only to dual-filter transition."""

    def test_first_odometry_delta_activates_filter(self, matcher):
        est = _estimator(matcher)
        est.predict_odom(np.eye(4))

        assert est.mode is EstimatorMode.DUAL_FILTER
        assert isinstance(est._odometry, OdometryActive)
        np.testing.assert_allclose(est.odometry_position(), ZERO3, atol=1e-9)
        np.testing.assert_allclose(abs(np.dot(est.odometry_orientation(), IDENTITY_QUAT)), 1.0)

    def test_mode_is_permanent(self, matcher, cloud):
        est = _estimator(matcher)
        est.predict_odom(np.eye(4))
        est.predict(0.1, ZERO3, ZERO3)
        est.correct(0.2, cloud)
        assert est.mode is EstimatorMode.DUAL_FILTER

    def test_filter_seeded_from_inertial_pose(self, matcher):
        est = _estimator(
            matcher, position=np.array([2.0, 3.0, 0.0]), quat=euler_to_quat(0.0, 0.0, np.pi / 2)
        )
        est.predict_odom(translation_transform(np.array([1.0, 0.0, 0.0])))

        # One metre forward while facing +y. The sigma-point spread of the
        # seed heading shortens the mean step to about 0.96 m (unscented
        # transform bias under the default odom_initial_cov).
        np.testing.assert_allclose(est.odometry_position(), [2.0, 4.0, 0.0], atol=0.06)
        # The inertial filter is not touched by odometry
        np.testing.assert_allclose(est.position(), [2.0, 3.0, 0.0])

    def test_tight_seed_composes_delta_in_body_frame(self, matcher):
        seed_quat = euler_to_quat(0.0, 0.0, np.pi / 2)
        est = _estimator(
            matcher, position=np.array([2.0, 3.0, 0.0]), quat=seed_quat, odom_initial_cov=1e-6
        )
        delta = pose_to_matrix(np.array([1.0, 0.0, 0.0]), euler_to_quat(0.0, 0.0, 0.3))
        est.predict_odom(delta)

        expected = pose_to_matrix(np.array([2.0, 3.0, 0.0]), seed_quat) @ delta
        np.testing.assert_allclose(est.odometry_pose_transform(), expected, atol=1e-3)

    def test_pose_transforms(self, matcher):
        quat = euler_to_quat(0.0, 0.0, 0.4)
        est = _estimator(matcher, position=np.array([1.0, 2.0, 0.0]), quat=quat)
        np.testing.assert_allclose(est.pose_transform(), pose_to_matrix(np.array([1.0, 2.0, 0.0]), quat))

        est.predict_odom(np.eye(4))
        T = est.odometry_pose_transform()
        np.testing.assert_allclose(T[:3, 3], est.odometry_position())
        np.testing.assert_allclose(T[:3, :3], pose_to_matrix(ZERO3, est.odometry_orientation())[:3, :3])
        np.testing.assert_allclose(T[:3, :3], est.pose_transform()[:3, :3], atol=1e-2)

    def test_odometry_covariance_shape(self, matcher):
        est = _estimator(matcher)
        est.predict_odom(np.eye(4))
        P = est.odometry_covariance()
        assert P.shape == (7, 7)
        assert np.all(np.linalg.eigvalsh(P) > 0)

    def test_bad_delta(self, matcher):
        est = _estimator(matcher)
        with pytest.raises(ValueError):
            est.predict_odom(np.eye(3))
        bad = np.eye(4)
        bad[0, 3] = np.inf
        with pytest.raises(ValueError):
            est.predict_odom(bad)
        assert est.mode is EstimatorMode.INERTIAL_ONLY


class TestCorrection:
    """Test suite for scan-matched correction."""

    def test_inertial_only_correction(self, cloud):
        target = translation_transform(np.array([1.0, 0.0, 0.0]))
        matcher = RecordingMatcher(target)
        est = _estimator(matcher)

        aligned = est.correct(0.5, cloud)

        np.testing.assert_allclose(aligned, transform_points(target, cloud))
        np.testing.assert_allclose(matcher.guesses[0], np.eye(4), atol=1e-12)
        np.testing.assert_allclose(est.last_initial_guess, np.eye(4), atol=1e-12)
        # Equal prior and measurement variance: halfway
        np.testing.assert_allclose(est.position(), [0.5, 0.0, 0.0], atol=1e-2)
        assert est.last_correction_time == 0.5
        np.testing.assert_allclose(est.inertial_prediction_error, target, atol=1e-12)
        assert est.odometry_prediction_error is None
        assert est.last_registration.converged

    def test_end_to_end_after_one_inertial_sample(self, cloud):
        est = _estimator(RecordingMatcher(translation_transform(np.array([1.0, 0.0, 0.0]))))
        est.predict(0.1, ZERO3, ZERO3)

        est.correct(0.2, cloud)

        assert est.last_correction_time == 0.2
        assert 0.0 < est.position()[0] < 1.0

    def test_odometry_pulls_guess_towards_match(self, cloud):
        target = translation_transform(np.array([1.0, 0.0, 0.0]))
        inertial_matcher = RecordingMatcher(target)
        dual_matcher = RecordingMatcher(target)
        inertial_only = _estimator(inertial_matcher)
        dual = _estimator(dual_matcher)
        dual.predict_odom(target)

        inertial_only.correct(0.1, cloud)
        dual.correct(0.1, cloud)

        matched = np.array([1.0, 0.0, 0.0])
        inertial_gap = np.linalg.norm(inertial_matcher.guesses[0][:3, 3] - matched)
        dual_gap = np.linalg.norm(dual_matcher.guesses[0][:3, 3] - matched)
        assert dual_gap < inertial_gap

    def test_correction_shrinks_covariance(self, matcher, cloud):
        est = _estimator(matcher)
        P_before = est.inertial_covariance()
        est.correct(0.1, cloud)
        assert est.inertial_covariance()[0, 0] < P_before[0, 0]

    def test_innovation_recorded(self, matcher, cloud):
        est = _estimator(matcher)
        assert est.inertial_innovation is None
        est.correct(0.1, cloud)
        innovation, S = est.inertial_innovation
        assert innovation.shape == (7,)
        assert S.shape == (7, 7)

    def test_dual_filter_guess_is_information_fusion(self, matcher, cloud):
        est = _estimator(matcher)
        est.predict(0.0, ZERO3, ZERO3)
        est.predict(0.1, np.array([0.5, 0.0, 0.0]), np.array([0.0, 0.0, 0.1]))
        est.predict(0.2, np.array([0.5, 0.0, 0.0]), np.array([0.0, 0.0, 0.1]))
        est.predict_odom(pose_to_matrix(np.array([0.2, 0.05, 0.0]), euler_to_quat(0.0, 0.0, 0.05)))

        x_i = est._ukf.state[POSE_INDICES]
        P_i = est.inertial_covariance()[np.ix_(POSE_INDICES, POSE_INDICES)]
        x_o = est._odometry.ukf.state.copy()
        P_o = est.odometry_covariance()
        assert np.dot(x_i[3:], x_o[3:]) > 0

        info_i = np.linalg.inv(P_i)
        info_o = np.linalg.inv(P_o)
        cov = np.linalg.inv(info_i + info_o)
        mean = cov @ (info_i @ x_i + info_o @ x_o)

        est.correct(0.3, cloud)

        guess = matcher.guesses[-1]
        np.testing.assert_allclose(guess[:3, 3], mean[:3], atol=1e-9)
        np.testing.assert_allclose(
            guess[:3, :3], pose_to_matrix(ZERO3, quat_normalize(mean[3:]))[:3, :3], atol=1e-9
        )

    def test_both_filters_corrected_with_same_pose(self, cloud):
        target = pose_to_matrix(np.array([0.3, -0.2, 0.1]), euler_to_quat(0.0, 0.0, 0.1))
        matcher = RecordingMatcher(target)
        est = _estimator(matcher)
        est.predict_odom(np.eye(4))

        for k in range(20):
            est.correct(0.1 * k, cloud)

        np.testing.assert_allclose(est.position(), [0.3, -0.2, 0.1], atol=2e-2)
        np.testing.assert_allclose(est.odometry_position(), [0.3, -0.2, 0.1], atol=1e-2)
        assert abs(np.dot(est.odometry_orientation(), euler_to_quat(0.0, 0.0, 0.1))) > 0.9999
        assert est.odometry_prediction_error is not None

    def test_filters_keep_separate_covariances(self, matcher, cloud):
        est = _estimator(matcher)
        est.predict_odom(translation_transform(np.array([1.0, 0.0, 0.0])))
        est.correct(0.1, cloud)

        assert est.inertial_covariance().shape == (16, 16)
        # Inertial: 0.01 prior, 0.01 measurement; odometry: ~1.0 prior, 1e-3 measurement
        assert est.inertial_covariance()[0, 0] == pytest.approx(0.005, rel=0.05)
        assert est.odometry_covariance()[0, 0] == pytest.approx(1e-3, rel=0.05)

    def test_observation_sign_follows_state(self, monkeypatch, cloud):
        """q and -q from the matcher must produce the same correction."""
        unpatched = pose_estimator_module.matrix_to_pose
        calls = {"n": 0}

        def flipping_matrix_to_pose(T):
            p, q = unpatched(T)
            calls["n"] += 1
            return p, (-q if calls["n"] % 2 else q)

        monkeypatch.setattr(pose_estimator_module, "matrix_to_pose", flipping_matrix_to_pose)

        target = pose_to_matrix(np.array([0.1, 0.0, 0.0]), euler_to_quat(0.0, 0.0, 0.2))
        est = _estimator(RecordingMatcher(target))
        previous_state_quat = est._ukf.state[6:10].copy()
        for k in range(10):
            est.correct(0.1 * k, cloud)
            state_quat = est._ukf.state[6:10]
            assert np.dot(state_quat, previous_state_quat) > 0
            previous_state_quat = state_quat.copy()

        assert calls["n"] == 10
        assert abs(np.dot(est.orientation(), euler_to_quat(0.0, 0.0, 0.2))) > 0.999


class TestCorrectionFailures:
    """Test suite for scan match and conditioning failures."""

    def test_unconverged_match_warns_and_is_used(self, cloud):
        target = translation_transform(np.array([1.0, 0.0, 0.0]))
        est = _estimator(RecordingMatcher(target, converged=False))

        with pytest.warns(RuntimeWarning, match="did not converge"):
            est.correct(0.1, cloud)

        assert est.position()[0] > 0.4

    def test_unconverged_match_warning_can_be_silenced(self, cloud):
        est = _estimator(RecordingMatcher(converged=False), warn_unconverged=False)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            est.correct(0.1, cloud)

    def test_unconverged_match_rejected(self, cloud):
        target = translation_transform(np.array([1.0, 0.0, 0.0]))
        est = _estimator(RecordingMatcher(target, converged=False), reject_unconverged=True)
        x_before, P_before = est._ukf.get_state()

        with pytest.raises(ScanMatchError):
            est.correct(0.1, cloud)

        np.testing.assert_array_equal(est._ukf.state, x_before)
        np.testing.assert_array_equal(est._ukf.covariance, P_before)
        assert est.last_correction_time == 0.1

    def test_degenerate_fusion_leaves_filters_untouched(self, matcher, cloud):
        est = _estimator(matcher, max_condition=1.5)
        est.predict_odom(translation_transform(np.array([1.0, 0.0, 0.0])))
        x_i, P_i = est._ukf.get_state()
        x_o, P_o = est._odometry.ukf.get_state()

        with pytest.raises(DegenerateCovarianceError):
            est.correct(0.1, cloud)

        assert matcher.guesses == []
        np.testing.assert_array_equal(est._ukf.state, x_i)
        np.testing.assert_array_equal(est._ukf.covariance, P_i)
        np.testing.assert_array_equal(est._odometry.ukf.state, x_o)
        np.testing.assert_array_equal(est._odometry.ukf.covariance, P_o)
        assert est.last_correction_time == 0.1

    def test_odometry_failure_rolls_back_inertial_correction(self, monkeypatch, cloud):
        target = translation_transform(np.array([1.0, 0.0, 0.0]))
        est = _estimator(RecordingMatcher(target))
        est.predict_odom(np.eye(4))
        x_i, P_i = est._ukf.get_state()

        def failing_correct(z):
            raise DegenerateCovarianceError("innovation covariance is singular")

        monkeypatch.setattr(est._odometry.ukf, "correct", failing_correct)

        with pytest.raises(DegenerateCovarianceError):
            est.correct(0.1, cloud)

        np.testing.assert_array_equal(est._ukf.state, x_i)
        np.testing.assert_array_equal(est._ukf.covariance, P_i)
        assert est.inertial_prediction_error is None
        assert est.inertial_innovation is None

    def test_rollback_restores_previous_innovation(self, monkeypatch, cloud):
        est = _estimator(RecordingMatcher(translation_transform(np.array([0.2, 0.0, 0.0]))))
        est.predict_odom(np.eye(4))
        est.correct(0.1, cloud)
        innovation, S = est.inertial_innovation

        def failing_correct(z):
            raise DegenerateCovarianceError("innovation covariance is singular")

        monkeypatch.setattr(est._odometry.ukf, "correct", failing_correct)
        est._registration.transform = translation_transform(np.array([1.0, 0.0, 0.0]))

        with pytest.raises(DegenerateCovarianceError):
            est.correct(0.2, cloud)

        restored_innovation, restored_S = est.inertial_innovation
        np.testing.assert_array_equal(restored_innovation, innovation)
        np.testing.assert_array_equal(restored_S, S)
