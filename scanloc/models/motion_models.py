"""
Motion models (process + measurement models) for the pose filters.

Each model fixes the state, control and observation layout of one filter
and provides:
- predict_state(x, u, dt): deterministic process step f(x, u, dt)
- observe(x): measurement function h(x) mapping a state to an observable pose
- process noise / measurement noise builders used by the filter owner

Both filters are corrected with the same 7-D observable pose
z = [px, py, pz, qw, qx, qy, qz].

Quaternions are scalar-first [qw, qx, qy, qz], body-to-map.
"""

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from scanloc.coords.rotations import (
    quat_from_small_rotation,
    quat_multiply,
    quat_normalize,
    quat_to_rotation_matrix,
)


# Inertial filter state layout (16 components)
POS = slice(0, 3)
VEL = slice(3, 6)
QUAT = slice(6, 10)
ACC_BIAS = slice(10, 13)
GYRO_BIAS = slice(13, 16)

# Odometry filter state layout (7 components)
ODOM_POS = slice(0, 3)
ODOM_QUAT = slice(3, 7)

POSE_DIM = 7


class MotionModel(ABC):
    """
    Contract between a filter engine and the system it estimates.

    Subclasses declare fixed dimensions and implement the process and
    measurement functions. They must be pure: the filter calls them once
    per sigma point.
    """

    state_dim: int
    control_dim: int
    measurement_dim: int = POSE_DIM

    @abstractmethod
    def predict_state(self, x: np.ndarray, u: Optional[np.ndarray], dt: float) -> np.ndarray:
        """Process model x_{k+1} = f(x_k, u_k, dt)."""

    @abstractmethod
    def observe(self, x: np.ndarray) -> np.ndarray:
        """Measurement model z = h(x)."""


class InertialMotionModel(MotionModel):
    """
    Inertial (IMU-driven) motion model.

    State (16): x = [p (3), v (3), q (4), b_a (3), b_g (3)]
        p: Position in map frame (m)
        v: Velocity in map frame (m/s)
        q: Orientation, body-to-map, scalar-first
        b_a: Accelerometer bias in body frame (m/s²)
        b_g: Gyroscope bias in body frame (rad/s)

    Control (6): u = [a (3), ω (3)]
        a: Linear acceleration in body frame (m/s²)
        ω: Angular velocity in body frame (rad/s)

    Process step (one strapdown step, attitude then velocity then position):
        q' = normalize(q ⊗ δq),  δq = normalize([1, (ω - b_g) Δt / 2])
        v' = v + (R(q) (a - b_a) - [0, 0, g]) Δt
        p' = p + v Δt
        b_a' = b_a,  b_g' = b_g   (random walk driven by process noise only)

    With gravity=0 the acceleration input is expected to be gravity
    compensated already; set gravity=9.80665 to feed raw specific force
    from an accelerometer whose map z axis points up.

    Measurement step: z = [p, normalize(q)]

    Example:
        >>> model = InertialMotionModel()
        >>> x = np.zeros(16); x[6] = 1.0
        >>> x[3] = 1.0  # 1 m/s along x
        >>> model.predict_state(x, np.zeros(6), dt=0.5)[:3]
        array([0.5, 0. , 0. ])
    """

    state_dim = 16
    control_dim = 6

    def __init__(
        self,
        gravity: float = 0.0,
        pos_noise: float = 1.0,
        vel_noise: float = 1.0,
        quat_noise: float = 0.5,
        acc_bias_noise: float = 1e-6,
        gyro_bias_noise: float = 1e-6,
        pos_measurement_noise: float = 0.01,
        quat_measurement_noise: float = 0.001,
    ):
        self.gravity = gravity
        self.pos_noise = pos_noise
        self.vel_noise = vel_noise
        self.quat_noise = quat_noise
        self.acc_bias_noise = acc_bias_noise
        self.gyro_bias_noise = gyro_bias_noise
        self.pos_measurement_noise = pos_measurement_noise
        self.quat_measurement_noise = quat_measurement_noise

    def predict_state(self, x: np.ndarray, u: Optional[np.ndarray], dt: float) -> np.ndarray:
        validate_motion_model_inputs(x, self.state_dim, model_name="InertialMotionModel")
        if u is None:
            u = np.zeros(self.control_dim)

        p = x[POS]
        v = x[VEL]
        q = quat_normalize(x[QUAT])
        acc_bias = x[ACC_BIAS]
        gyro_bias = x[GYRO_BIAS]

        acc = u[0:3] - acc_bias
        gyro = u[3:6] - gyro_bias

        x_next = np.empty(self.state_dim)

        # Position from the velocity at the start of the step
        x_next[POS] = p + v * dt

        # Velocity from body acceleration rotated into the map frame
        acc_map = quat_to_rotation_matrix(q) @ acc
        acc_map[2] -= self.gravity
        x_next[VEL] = v + acc_map * dt

        # Orientation: right-multiply the body-frame increment
        dq = quat_from_small_rotation(gyro * dt)
        x_next[QUAT] = quat_normalize(quat_multiply(q, dq))

        x_next[ACC_BIAS] = acc_bias
        x_next[GYRO_BIAS] = gyro_bias

        return x_next

    def observe(self, x: np.ndarray) -> np.ndarray:
        z = np.empty(POSE_DIM)
        z[0:3] = x[POS]
        z[3:7] = quat_normalize(x[QUAT])
        return z

    def process_noise(self, dt: float) -> np.ndarray:
        """
        Process noise for a step of length dt.

        Block-diagonal base matrix (position, velocity, orientation, the two
        bias blocks) scaled by dt, approximating continuous-time noise
        accumulation.

        Args:
            dt: Time step (s), must be positive.

        Returns:
            16x16 diagonal covariance.
        """
        if dt <= 0:
            raise ValueError(f"dt must be positive, got {dt}")

        scales = np.empty(self.state_dim)
        scales[POS] = self.pos_noise
        scales[VEL] = self.vel_noise
        scales[QUAT] = self.quat_noise
        scales[ACC_BIAS] = self.acc_bias_noise
        scales[GYRO_BIAS] = self.gyro_bias_noise
        return np.diag(scales) * dt

    def measurement_noise(self) -> np.ndarray:
        """7x7 diagonal measurement noise; looser on position than on orientation."""
        return np.diag(
            [self.pos_measurement_noise] * 3 + [self.quat_measurement_noise] * 4
        )

    @staticmethod
    def initial_state(position: np.ndarray, quat: np.ndarray) -> np.ndarray:
        """State with the given pose, zero velocity and zero biases."""
        x0 = np.zeros(16)
        x0[POS] = position
        x0[QUAT] = quat_normalize(quat)
        return x0


class OdometryMotionModel(MotionModel):
    """
    Odometry-driven motion model.

    State (7): x = [p (3), q (4)]
    Control (7): u = [t (3), δq (4)], a relative transform between
        consecutive odometry frames.

    Frame convention: the relative transform is expressed in the previous
    pose's body frame and is composed on the right,
        T_{k+1} = T_k @ ΔT
    so that
        p' = p + R(q) t
        q' = normalize(q ⊗ δq)
    This matches relative transforms computed as inv(T_odom_{k}) @ T_odom_{k+1}
    from a wheel or LiDAR odometry source. dt is ignored.

    Measurement step: identity with renormalized quaternion.

    Example:
        >>> model = OdometryMotionModel()
        >>> x = np.array([0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0])
        >>> u = np.array([1.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0])
        >>> model.predict_state(x, u, dt=0.0)[:3]
        array([1., 0., 0.])
    """

    state_dim = 7
    control_dim = 7

    def __init__(
        self,
        trans_noise_floor: float = 1e-3,
        rot_noise_floor: float = 1e-3,
        measurement_noise_scale: float = 1e-3,
    ):
        self.trans_noise_floor = trans_noise_floor
        self.rot_noise_floor = rot_noise_floor
        self.measurement_noise_scale = measurement_noise_scale

    def predict_state(self, x: np.ndarray, u: Optional[np.ndarray], dt: float = 0.0) -> np.ndarray:
        validate_motion_model_inputs(x, self.state_dim, model_name="OdometryMotionModel")
        if u is None:
            return self.observe(x)

        p = x[ODOM_POS]
        q = quat_normalize(x[ODOM_QUAT])
        t = u[0:3]
        dq = quat_normalize(u[3:7])

        x_next = np.empty(self.state_dim)
        x_next[ODOM_POS] = p + quat_to_rotation_matrix(q) @ t
        x_next[ODOM_QUAT] = quat_normalize(quat_multiply(q, dq))
        return x_next

    def observe(self, x: np.ndarray) -> np.ndarray:
        z = np.empty(POSE_DIM)
        z[0:3] = x[ODOM_POS]
        z[3:7] = quat_normalize(x[ODOM_QUAT])
        return z

    def process_noise(self, u: np.ndarray) -> np.ndarray:
        """
        Adaptive process noise for one relative motion.

        Larger motions are trusted less:
            translation block: (‖t‖ + floor_t) I₃
            rotation block:    ((1 - |δq_w|) + floor_r) I₄
        1 - |δq_w| is a small-angle proxy for the rotation magnitude, so a
        near-identity rotation adds only the floor.

        Args:
            u: Control [t (3), δq (4)].

        Returns:
            7x7 diagonal covariance.
        """
        u = np.asarray(u, dtype=float)
        if u.shape != (self.control_dim,):
            raise ValueError(f"control must have shape ({self.control_dim},), got {u.shape}")

        dq = quat_normalize(u[3:7])
        trans = np.linalg.norm(u[0:3]) + self.trans_noise_floor
        rot = (1.0 - abs(dq[0])) + self.rot_noise_floor

        return np.diag([trans] * 3 + [rot] * 4)

    def measurement_noise(self) -> np.ndarray:
        return np.eye(POSE_DIM) * self.measurement_noise_scale


def validate_motion_model_inputs(
    x: np.ndarray,
    expected_dim: int,
    model_name: str = "motion model",
) -> None:
    """
    Validate the state vector handed to a motion model.

    Args:
        x: State vector
        expected_dim: Expected state dimension
        model_name: Name of model for error messages

    Raises:
        ValueError: If validation fails
        TypeError: If wrong types provided
    """
    if not isinstance(x, np.ndarray):
        raise TypeError(f"{model_name}: state must be numpy array, got {type(x)}")

    if x.shape != (expected_dim,):
        raise ValueError(
            f"{model_name}: state must have shape ({expected_dim},), got {x.shape}"
        )
