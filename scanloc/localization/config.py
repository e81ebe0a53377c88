"""
Configuration for the dual-filter pose estimator.

All tunable constants of the estimator (cool time, inertial process and
measurement noise, odometry noise, conditioning limits and the scan-match
failure policy) live in one frozen dataclass. It can be built in code,
from a dict, or from a JSON file:

    {
        "cool_time_duration": 0.5,
        "inertial_pos_noise": 2.0,
        "reject_unconverged": true
    }

Unlisted keys keep their defaults; unknown keys are rejected.
"""

import json
import math
import warnings
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Union

from scanloc.models.motion_models import InertialMotionModel, OdometryMotionModel


@dataclass(frozen=True)
class PoseEstimatorConfig:
    """
    Tunable parameters of PoseEstimator.

    Attributes:
        cool_time_duration: Grace period after construction during which
            inertial prediction is suppressed (s).
        gravity: Gravity magnitude subtracted along map z by the inertial
            model (m/s²). 0.0 means inputs are gravity compensated.
        inertial_pos_noise: Process noise scale of the position block (per s).
        inertial_vel_noise: Process noise scale of the velocity block (per s).
        inertial_quat_noise: Process noise scale of the orientation block (per s).
        inertial_acc_bias_noise: Process noise scale of the accelerometer bias.
        inertial_gyro_bias_noise: Process noise scale of the gyroscope bias.
        inertial_pos_measurement_noise: Measurement variance of observed position.
        inertial_quat_measurement_noise: Measurement variance of observed quaternion.
        initial_cov: Inertial filter initial covariance (times I₁₆).
        odom_measurement_noise: Odometry filter measurement variance (times I₇).
        odom_initial_cov: Odometry filter initial covariance (times I₇).
        odom_trans_noise_floor: Floor added to the translational process noise.
        odom_rot_noise_floor: Floor added to the rotational process noise.
        max_condition: Largest condition number accepted when inverting a
            covariance during fusion or correction.
        reject_unconverged: Raise ScanMatchError instead of using a scan match
            that did not converge.
        warn_unconverged: Emit a RuntimeWarning for accepted non-converged
            scan matches.

    Example:
        >>> config = PoseEstimatorConfig(cool_time_duration=0.0)
        >>> config.inertial_pos_noise
        1.0
        >>> PoseEstimatorConfig.from_dict({"gravity": 9.80665}).gravity
        9.80665
    """

    cool_time_duration: float = 1.0
    gravity: float = 0.0

    inertial_pos_noise: float = 1.0
    inertial_vel_noise: float = 1.0
    inertial_quat_noise: float = 0.5
    inertial_acc_bias_noise: float = 1e-6
    inertial_gyro_bias_noise: float = 1e-6
    inertial_pos_measurement_noise: float = 0.01
    inertial_quat_measurement_noise: float = 0.001
    initial_cov: float = 0.01

    odom_measurement_noise: float = 1e-3
    odom_initial_cov: float = 1e-2
    odom_trans_noise_floor: float = 1e-3
    odom_rot_noise_floor: float = 1e-3

    max_condition: float = 1e12
    reject_unconverged: bool = False
    warn_unconverged: bool = True

    def __post_init__(self) -> None:
        """Validate parameter values."""
        for f in fields(self):
            value = getattr(self, f.name)
            if f.type is bool or f.type == "bool":
                if not isinstance(value, bool):
                    raise TypeError(f"{f.name} must be bool, got {type(value).__name__}")
                continue

            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise TypeError(f"{f.name} must be a number, got {type(value).__name__}")
            if not math.isfinite(value):
                raise ValueError(f"{f.name} must be finite, got {value}")
            if value < 0:
                raise ValueError(f"{f.name} must be non-negative, got {value}")

        strictly_positive = (
            "inertial_pos_measurement_noise",
            "inertial_quat_measurement_noise",
            "initial_cov",
            "odom_measurement_noise",
            "odom_initial_cov",
        )
        for name in strictly_positive:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        if self.max_condition <= 1.0:
            raise ValueError(f"max_condition must be > 1, got {self.max_condition}")

        if self.cool_time_duration > 60.0:
            warnings.warn(
                f"cool_time_duration={self.cool_time_duration} s is unusually long; "
                "inertial prediction stays disabled for that long after construction",
                UserWarning,
            )

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PoseEstimatorConfig":
        """
        Build a config from a dict, rejecting unknown keys.

        Raises:
            ValueError: If d contains keys that are not config fields.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(d) - known)
        if unknown:
            raise ValueError(f"Unknown PoseEstimatorConfig keys: {unknown}")
        return cls(**d)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "PoseEstimatorConfig":
        """Load a config from a JSON object file."""
        with open(path, "r") as f:
            d = json.load(f)
        if not isinstance(d, dict):
            raise ValueError(f"{path}: expected a JSON object, got {type(d).__name__}")
        return cls.from_dict(d)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def inertial_model(self) -> InertialMotionModel:
        """Inertial motion model parameterized by this config."""
        return InertialMotionModel(
            gravity=self.gravity,
            pos_noise=self.inertial_pos_noise,
            vel_noise=self.inertial_vel_noise,
            quat_noise=self.inertial_quat_noise,
            acc_bias_noise=self.inertial_acc_bias_noise,
            gyro_bias_noise=self.inertial_gyro_bias_noise,
            pos_measurement_noise=self.inertial_pos_measurement_noise,
            quat_measurement_noise=self.inertial_quat_measurement_noise,
        )

    def odometry_model(self) -> OdometryMotionModel:
        """Odometry motion model parameterized by this config."""
        return OdometryMotionModel(
            trans_noise_floor=self.odom_trans_noise_floor,
            rot_noise_floor=self.odom_rot_noise_floor,
            measurement_noise_scale=self.odom_measurement_noise,
        )
