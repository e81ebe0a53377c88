"""Rotation and rigid-transform utilities.

This module provides the geometric primitives shared by the estimators,
the motion models and the scan matcher:
- Quaternion algebra (scalar-first [qw, qx, qy, qz], Hamilton product)
- Rotation matrix / quaternion / Euler conversions
- 4x4 homogeneous SE(3) transforms
"""

from scanloc.coords.rotations import (
    euler_to_quat,
    quat_align_sign,
    quat_angle_between,
    quat_conjugate,
    quat_from_axis_angle,
    quat_from_small_rotation,
    quat_multiply,
    quat_normalize,
    quat_to_euler,
    quat_to_rotation_matrix,
    rotation_matrix_to_quat,
)
from scanloc.coords.transforms import (
    matrix_to_pose,
    pose_to_matrix,
    transform_inverse,
    transform_points,
    translation_transform,
)

__all__ = [
    # Rotations
    "quat_normalize",
    "quat_conjugate",
    "quat_multiply",
    "quat_from_small_rotation",
    "quat_from_axis_angle",
    "quat_align_sign",
    "quat_angle_between",
    "quat_to_rotation_matrix",
    "rotation_matrix_to_quat",
    "euler_to_quat",
    "quat_to_euler",
    # Transforms
    "pose_to_matrix",
    "matrix_to_pose",
    "translation_transform",
    "transform_inverse",
    "transform_points",
]
