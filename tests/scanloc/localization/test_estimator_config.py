"""Unit tests for PoseEstimatorConfig."""

import json
import warnings

import numpy as np
import pytest

from scanloc.localization import PoseEstimatorConfig


class TestDefaults:
    """Test suite for default values and model construction."""

    def test_default_values(self):
        config = PoseEstimatorConfig()
        assert config.cool_time_duration == 1.0
        assert config.gravity == 0.0
        assert config.initial_cov == 0.01
        assert config.odom_measurement_noise == 1e-3
        assert config.reject_unconverged is False
        assert config.warn_unconverged is True

    def test_inertial_model_uses_config_noise(self):
        config = PoseEstimatorConfig(inertial_pos_noise=2.0, inertial_quat_measurement_noise=0.005)
        model = config.inertial_model()
        assert np.diag(model.process_noise(1.0))[0] == pytest.approx(2.0)
        assert np.diag(model.measurement_noise())[3] == pytest.approx(0.005)

    def test_odometry_model_uses_config_noise(self):
        config = PoseEstimatorConfig(odom_measurement_noise=0.02, odom_trans_noise_floor=0.1)
        model = config.odometry_model()
        np.testing.assert_allclose(model.measurement_noise(), np.eye(7) * 0.02)
        u = np.array([0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0])
        assert np.diag(model.process_noise(u))[0] == pytest.approx(0.1)

    def test_frozen(self):
        config = PoseEstimatorConfig()
        with pytest.raises(AttributeError):
            config.gravity = 9.81


class TestValidation:
    """Test suite for rejected parameter values."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"cool_time_duration": -1.0},
            {"inertial_pos_noise": float("nan")},
            {"inertial_vel_noise": float("inf")},
            {"initial_cov": 0.0},
            {"odom_measurement_noise": 0.0},
            {"inertial_quat_measurement_noise": 0.0},
            {"max_condition": 1.0},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            PoseEstimatorConfig(**kwargs)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"gravity": "9.81"},
            {"cool_time_duration": True},
            {"reject_unconverged": 1},
            {"warn_unconverged": "yes"},
        ],
    )
    def test_invalid_types(self, kwargs):
        with pytest.raises(TypeError):
            PoseEstimatorConfig(**kwargs)

    def test_zero_process_noise_allowed(self):
        config = PoseEstimatorConfig(inertial_acc_bias_noise=0.0, cool_time_duration=0.0)
        assert config.inertial_acc_bias_noise == 0.0

    def test_long_cool_time_warns(self):
        with pytest.warns(UserWarning, match="cool_time_duration"):
            PoseEstimatorConfig(cool_time_duration=120.0)

    def test_normal_cool_time_does_not_warn(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            PoseEstimatorConfig(cool_time_duration=2.0)


class TestSerialization:
    """Test suite for dict / JSON loading."""

    def test_from_dict_overrides_listed_keys_only(self):
        config = PoseEstimatorConfig.from_dict({"gravity": 9.80665, "reject_unconverged": True})
        assert config.gravity == 9.80665
        assert config.reject_unconverged is True
        assert config.inertial_pos_noise == 1.0

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="cool_time"):
            PoseEstimatorConfig.from_dict({"cool_time": 1.0})

    def test_to_dict_round_trip(self):
        config = PoseEstimatorConfig(cool_time_duration=0.25, max_condition=1e8)
        assert PoseEstimatorConfig.from_dict(config.to_dict()) == config

    def test_from_json(self, tmp_path):
        path = tmp_path / "estimator.json"
        path.write_text(json.dumps({"cool_time_duration": 0.5, "odom_initial_cov": 0.1}))
        config = PoseEstimatorConfig.from_json(path)
        assert config.cool_time_duration == 0.5
        assert config.odom_initial_cov == 0.1

    def test_from_json_requires_object(self, tmp_path):
        path = tmp_path / "estimator.json"
        path.write_text("[1, 2, 3]")
        with pytest.raises(ValueError):
            PoseEstimatorConfig.from_json(path)
