"""
Dual-filter pose estimator with scan-matching correction.

Fuses three asynchronous inputs into one 6-DoF pose:

    inertial samples  ->  predict()       ->  inertial UKF (16-D, always active)
    odometry deltas   ->  predict_odom()  ->  odometry UKF (7-D, created lazily)
    point clouds      ->  correct()       ->  fused guess -> scan match -> both UKFs

The two filters are never merged. At every correction their pose beliefs
are fused in information form only to build the initial guess for scan
matching, and then each filter is corrected independently with the same
scan-matched pose, so each keeps its own error history.

Modes:
    INERTIAL_ONLY  the odometry filter does not exist yet
    DUAL_FILTER    the first predict_odom() created it; permanent

Usage:
    >>> estimator = PoseEstimator(registration, stamp=0.0,
    ...                           position=np.zeros(3),
    ...                           quat=np.array([1.0, 0, 0, 0]))
    >>> estimator.predict(0.01, acc, gyro)          # per IMU sample
    >>> estimator.predict_odom(delta)               # per odometry delta
    >>> aligned = estimator.correct(0.1, cloud)     # per scan
    >>> estimator.pose_transform()
"""

import warnings
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple, Union

import numpy as np

from scanloc.coords.rotations import quat_align_sign, quat_normalize, rotation_matrix_to_quat
from scanloc.coords.transforms import matrix_to_pose, pose_to_matrix, transform_inverse
from scanloc.estimators.unscented_kalman_filter import UnscentedKalmanFilter
from scanloc.fusion.information import fuse_pose_beliefs
from scanloc.fusion.types import PoseBelief
from scanloc.localization.config import PoseEstimatorConfig
from scanloc.models.motion_models import (
    POS,
    POSE_DIM,
    QUAT,
    VEL,
    InertialMotionModel,
    OdometryMotionModel,
)
from scanloc.slam.registration import ScanMatcher, ScanMatchError
from scanloc.slam.types import PointCloud3D, RegistrationResult
from scanloc.utils.linalg import DegenerateCovarianceError


# Rows/columns of the inertial state that form the observable pose [p, q]
_INERTIAL_POSE_INDICES = np.r_[0:3, 6:10]


class EstimatorMode(Enum):
    """Operating mode of a PoseEstimator."""

    INERTIAL_ONLY = "inertial_only"
    DUAL_FILTER = "dual_filter"


@dataclass(frozen=True)
class OdometryInactive:
    """No odometry input has been received yet."""

    mode = EstimatorMode.INERTIAL_ONLY


@dataclass(frozen=True)
class OdometryActive:
    """The odometry filter exists and is owned by the estimator."""

    ukf: UnscentedKalmanFilter

    mode = EstimatorMode.DUAL_FILTER


OdometryState = Union[OdometryInactive, OdometryActive]


class PoseEstimator:
    """
    Dual-filter pose estimator.

    Threading: there is no internal locking. predict(), predict_odom() and
    correct() all mutate filter state, so callers must serialize them (one
    dispatch thread, one mutex, or a message queue), including for the
    duration of the scan match inside correct().

    The registration handle is shared with the caller: the estimator
    stores a reference, calls registration.align() and never copies,
    replaces or closes it.

    Errors:
        - Non-increasing timestamps and predictions inside the cool time are
          silently absorbed (only the last-seen timestamp changes).
        - A covariance that cannot be inverted safely during fusion or
          correction raises DegenerateCovarianceError; neither filter is
          modified in that case.
        - A non-converged scan match is used with a RuntimeWarning, or
          rejected with ScanMatchError when config.reject_unconverged is set.

    Attributes:
        config: PoseEstimatorConfig in use.
        init_stamp: Construction timestamp (s).
        prev_stamp: Timestamp of the last predict() call, or None.
        cool_time_duration: Grace period after init_stamp (s).
    """

    def __init__(
        self,
        registration: ScanMatcher,
        stamp: float,
        position: np.ndarray,
        quat: np.ndarray,
        cool_time_duration: Optional[float] = None,
        config: Optional[PoseEstimatorConfig] = None,
    ):
        """
        Initialize the estimator at a known pose.

        Args:
            registration: Scan matcher shared with the caller.
            stamp: Initial timestamp (s).
            position: Initial position [x, y, z] in the map frame (m).
            quat: Initial orientation [qw, qx, qy, qz], body-to-map.
            cool_time_duration: Overrides config.cool_time_duration
                (1.0 s by default).
            config: Estimator parameters; defaults to PoseEstimatorConfig().

        Raises:
            ValueError: If the pose has the wrong shape or the quaternion is zero.
            TypeError: If registration has no align() method.
        """
        if not isinstance(registration, ScanMatcher):
            raise TypeError(
                f"registration must provide align(cloud, initial_guess), got {type(registration)}"
            )

        if config is None:
            config = PoseEstimatorConfig()
        if cool_time_duration is not None:
            config = replace(config, cool_time_duration=cool_time_duration)

        position = np.asarray(position, dtype=float)
        if position.shape != (3,):
            raise ValueError(f"position must have shape (3,), got {position.shape}")

        self.config = config
        self._registration = registration

        self.init_stamp = float(stamp)
        self.prev_stamp: Optional[float] = None
        self.cool_time_duration = config.cool_time_duration
        self._last_correction_stamp: Optional[float] = None

        self._inertial_model: InertialMotionModel = config.inertial_model()
        self._odometry_model: OdometryMotionModel = config.odometry_model()

        x0 = InertialMotionModel.initial_state(position, quat)
        self._ukf = UnscentedKalmanFilter(
            self._inertial_model,
            process_noise=self._inertial_model.process_noise(1.0),
            measurement_noise=self._inertial_model.measurement_noise(),
            x0=x0,
            P0=np.eye(InertialMotionModel.state_dim) * config.initial_cov,
            max_condition=config.max_condition,
        )
        self._odometry: OdometryState = OdometryInactive()

        self._last_initial_guess: Optional[np.ndarray] = None
        self._last_registration: Optional[RegistrationResult] = None
        self._inertial_pred_error: Optional[np.ndarray] = None
        self._odom_pred_error: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def predict(self, stamp: float, acc: np.ndarray, gyro: np.ndarray) -> None:
        """
        Propagate the inertial filter with one inertial sample.

        Skipped (only prev_stamp is updated) while within the cool time,
        on the first call, or when stamp is not later than the previous one.

        Args:
            stamp: Sample timestamp (s).
            acc: Linear acceleration in the body frame (m/s²), shape (3,).
            gyro: Angular velocity in the body frame (rad/s), shape (3,).
        """
        acc = np.asarray(acc, dtype=float)
        gyro = np.asarray(gyro, dtype=float)
        if acc.shape != (3,) or gyro.shape != (3,):
            raise ValueError(
                f"acc and gyro must have shape (3,), got {acc.shape} and {gyro.shape}"
            )

        stamp = float(stamp)
        if (
            stamp - self.init_stamp < self.cool_time_duration
            or self.prev_stamp is None
            or stamp <= self.prev_stamp
        ):
            self.prev_stamp = stamp
            return

        dt = stamp - self.prev_stamp
        self.prev_stamp = stamp

        self._ukf.set_process_noise_cov(self._inertial_model.process_noise(dt))
        self._ukf.predict(np.concatenate([acc, gyro]), dt)

    def predict_odom(self, delta: np.ndarray) -> None:
        """
        Propagate the odometry filter with one relative transform.

        The first call creates the odometry filter, seeded with the inertial
        filter's current pose, and switches the estimator to DUAL_FILTER.

        Args:
            delta: 4x4 relative transform between consecutive odometry
                frames, expressed in the previous frame.
        """
        delta = np.asarray(delta, dtype=float)
        if delta.shape != (4, 4):
            raise ValueError(f"delta must have shape (4, 4), got {delta.shape}")
        if not np.all(np.isfinite(delta)):
            raise ValueError("delta must be finite")

        if isinstance(self._odometry, OdometryInactive):
            x0 = np.concatenate([self.position(), self.orientation()])
            odom_ukf = UnscentedKalmanFilter(
                self._odometry_model,
                process_noise=np.eye(POSE_DIM) * self.config.odom_initial_cov,
                measurement_noise=self._odometry_model.measurement_noise(),
                x0=x0,
                P0=np.eye(POSE_DIM) * self.config.odom_initial_cov,
                max_condition=self.config.max_condition,
            )
            self._odometry = OdometryActive(odom_ukf)

        control = np.concatenate([delta[:3, 3], rotation_matrix_to_quat(delta[:3, :3])])

        odom_ukf = self._odometry.ukf
        odom_ukf.set_process_noise_cov(self._odometry_model.process_noise(control))
        odom_ukf.predict(control)

    def correct(self, stamp: float, cloud: PointCloud3D) -> PointCloud3D:
        """
        Correct both filters with a scan matched against the map.

        Args:
            stamp: Scan timestamp (s).
            cloud: Points in the sensor frame, shape (N, k>=3).

        Returns:
            The cloud aligned to the map by the scan matcher.

        Raises:
            DegenerateCovarianceError: If a covariance cannot be inverted
                safely; no filter is modified.
            ScanMatchError: If the match did not converge and
                config.reject_unconverged is set; no filter is modified.
        """
        self._last_correction_stamp = float(stamp)

        inertial_belief = self._inertial_belief()
        inertial_guess = inertial_belief.matrix()
        odom_guess = None

        if isinstance(self._odometry, OdometryActive):
            odom_belief = self._odometry_belief()
            odom_guess = odom_belief.matrix()
            fused = fuse_pose_beliefs(inertial_belief, odom_belief, self.config.max_condition)
            init_guess = fused.matrix()
        else:
            init_guess = inertial_guess

        self._last_initial_guess = init_guess
        result = self._registration.align(cloud, init_guess.copy())
        self._last_registration = result

        if not result.converged:
            message = (
                f"scan match at t={stamp:.3f} did not converge "
                f"(fitness={result.fitness:.4g}, iterations={result.iterations})"
            )
            if self.config.reject_unconverged:
                raise ScanMatchError(message)
            if self.config.warn_unconverged:
                warnings.warn(message + "; using its transform anyway", RuntimeWarning)

        final = result.transform
        p, q = matrix_to_pose(final)
        q = quat_align_sign(q, self.orientation())
        observation = np.concatenate([p, q])

        saved_state, saved_cov = self._ukf.get_state()
        saved_innovation = (self._ukf.innovation, self._ukf.innovation_covariance)
        self._ukf.correct(observation)
        if isinstance(self._odometry, OdometryActive):
            try:
                self._odometry.ukf.correct(observation)
            except DegenerateCovarianceError:
                self._ukf.state = saved_state
                self._ukf.covariance = saved_cov
                self._ukf.innovation, self._ukf.innovation_covariance = saved_innovation
                raise

        self._inertial_pred_error = transform_inverse(inertial_guess) @ final
        if odom_guess is not None:
            self._odom_pred_error = transform_inverse(odom_guess) @ final

        return result.aligned

    # ------------------------------------------------------------------
    # Beliefs
    # ------------------------------------------------------------------

    def _inertial_belief(self) -> PoseBelief:
        mean = self._ukf.state[_INERTIAL_POSE_INDICES]
        cov = self._ukf.covariance[np.ix_(_INERTIAL_POSE_INDICES, _INERTIAL_POSE_INDICES)]
        return PoseBelief(mean=mean, cov=0.5 * (cov + cov.T))

    def _odometry_belief(self) -> PoseBelief:
        ukf = self._active_odometry().ukf
        return PoseBelief(mean=ukf.state, cov=0.5 * (ukf.covariance + ukf.covariance.T))

    def _active_odometry(self) -> OdometryActive:
        if not isinstance(self._odometry, OdometryActive):
            raise RuntimeError("odometry filter is not active; call predict_odom() first")
        return self._odometry

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def mode(self) -> EstimatorMode:
        return self._odometry.mode

    @property
    def registration(self) -> ScanMatcher:
        return self._registration

    @property
    def last_correction_time(self) -> Optional[float]:
        """Timestamp of the last correct() call, or None before the first one."""
        return self._last_correction_stamp

    def position(self) -> np.ndarray:
        return self._ukf.state[POS].copy()

    def velocity(self) -> np.ndarray:
        return self._ukf.state[VEL].copy()

    def orientation(self) -> np.ndarray:
        """Unit quaternion [qw, qx, qy, qz] of the inertial filter."""
        return quat_normalize(self._ukf.state[QUAT])

    def pose_transform(self) -> np.ndarray:
        return pose_to_matrix(self.position(), self.orientation())

    def odometry_position(self) -> np.ndarray:
        return self._active_odometry().ukf.state[0:3].copy()

    def odometry_orientation(self) -> np.ndarray:
        return quat_normalize(self._active_odometry().ukf.state[3:7])

    def odometry_pose_transform(self) -> np.ndarray:
        return pose_to_matrix(self.odometry_position(), self.odometry_orientation())

    def inertial_covariance(self) -> np.ndarray:
        return self._ukf.covariance.copy()

    def odometry_covariance(self) -> np.ndarray:
        return self._active_odometry().ukf.covariance.copy()

    @property
    def inertial_prediction_error(self) -> Optional[np.ndarray]:
        """inv(inertial guess) @ scan-matched transform of the last correction."""
        return None if self._inertial_pred_error is None else self._inertial_pred_error.copy()

    @property
    def odometry_prediction_error(self) -> Optional[np.ndarray]:
        """inv(odometry guess) @ scan-matched transform, once odometry is active."""
        return None if self._odom_pred_error is None else self._odom_pred_error.copy()

    @property
    def inertial_innovation(self) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """(innovation, innovation covariance) of the last inertial correction."""
        if self._ukf.innovation is None:
            return None
        return self._ukf.innovation.copy(), self._ukf.innovation_covariance.copy()

    @property
    def last_initial_guess(self) -> Optional[np.ndarray]:
        return None if self._last_initial_guess is None else self._last_initial_guess.copy()

    @property
    def last_registration(self) -> Optional[RegistrationResult]:
        return self._last_registration
