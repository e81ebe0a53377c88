"""Homogeneous SE(3) transforms.

Poses and scan-matching results are exchanged as 4x4 homogeneous matrices

    T = [[R, t],
         [0, 1]]

which map points from a sensor/body frame into the map frame:
p_map = R @ p_body + t. Composition is ordinary matrix multiplication,
T_ac = T_ab @ T_bc.
"""

from typing import Tuple

import numpy as np
from numpy.typing import NDArray

from scanloc.coords.rotations import quat_to_rotation_matrix, rotation_matrix_to_quat


def _check_transform(T: NDArray[np.float64], name: str = "T") -> NDArray[np.float64]:
    T = np.asarray(T, dtype=np.float64)
    if T.shape != (4, 4):
        raise ValueError(f"{name} must be a 4x4 homogeneous transform, got shape {T.shape}")
    return T


def pose_to_matrix(
    position: NDArray[np.float64],
    quat: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Build a 4x4 transform from a position and a (normalized on the fly) quaternion.

    Args:
        position: Translation [x, y, z] in meters.
        quat: Orientation [qw, qx, qy, qz].

    Returns:
        4x4 homogeneous transform.

    Example:
        >>> T = pose_to_matrix(np.array([1.0, 2.0, 3.0]), np.array([1.0, 0, 0, 0]))
        >>> T[:3, 3]
        array([1., 2., 3.])
    """
    position = np.asarray(position, dtype=np.float64)
    if position.shape != (3,):
        raise ValueError(f"position must have shape (3,), got {position.shape}")

    T = np.eye(4)
    T[:3, :3] = quat_to_rotation_matrix(quat)
    T[:3, 3] = position
    return T


def matrix_to_pose(T: NDArray[np.float64]) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Split a 4x4 transform into (position, unit quaternion)."""
    T = _check_transform(T)
    return T[:3, 3].copy(), rotation_matrix_to_quat(T[:3, :3])


def translation_transform(t: NDArray[np.float64]) -> NDArray[np.float64]:
    """Pure translation transform."""
    t = np.asarray(t, dtype=np.float64)
    if t.shape != (3,):
        raise ValueError(f"t must have shape (3,), got {t.shape}")
    T = np.eye(4)
    T[:3, 3] = t
    return T


def transform_inverse(T: NDArray[np.float64]) -> NDArray[np.float64]:
    """Rigid-body inverse: [[Rᵀ, -Rᵀt], [0, 1]].

    Uses the orthogonality of R instead of a general matrix inverse.
    """
    T = _check_transform(T)
    R = T[:3, :3]
    t = T[:3, 3]

    T_inv = np.eye(4)
    T_inv[:3, :3] = R.T
    T_inv[:3, 3] = -R.T @ t
    return T_inv


def transform_points(T: NDArray[np.float64], points: NDArray[np.float64]) -> NDArray[np.float64]:
    """Apply a transform to an (N, k) point array, k >= 3.

    Only the first three columns (x, y, z) are transformed; any extra
    columns (e.g. intensity) are copied through unchanged.

    Args:
        T: 4x4 homogeneous transform.
        points: Points of shape (N, k), k >= 3.

    Returns:
        Transformed copy of the points, same shape.
    """
    T = _check_transform(T)
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] < 3:
        raise ValueError(f"points must have shape (N, k>=3), got {points.shape}")

    out = points.copy()
    out[:, :3] = points[:, :3] @ T[:3, :3].T + T[:3, 3]
    return out
