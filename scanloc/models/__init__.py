"""
Motion models for the inertial and odometry pose filters.
"""

from .motion_models import (
    ACC_BIAS,
    GYRO_BIAS,
    ODOM_POS,
    ODOM_QUAT,
    POS,
    POSE_DIM,
    QUAT,
    VEL,
    InertialMotionModel,
    MotionModel,
    OdometryMotionModel,
    validate_motion_model_inputs,
)

__all__ = [
    # Contract
    "MotionModel",
    "validate_motion_model_inputs",
    # Models
    "InertialMotionModel",
    "OdometryMotionModel",
    # State layout
    "POS",
    "VEL",
    "QUAT",
    "ACC_BIAS",
    "GYRO_BIAS",
    "ODOM_POS",
    "ODOM_QUAT",
    "POSE_DIM",
]
