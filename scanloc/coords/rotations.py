"""Quaternion algebra and rotation conversions.

This module provides the rotation primitives used by the pose estimator:
- Hamilton quaternion product, conjugate and normalization
- Conversions between quaternions, rotation matrices and Euler angles
- Sign disambiguation (q and -q encode the same rotation)

Conventions:
- Quaternions: [qw, qx, qy, qz] where qw is the scalar part
- Quaternion meaning: body-to-map rotation, v_map = R(q) @ v_body
- Composition: q_ab ⊗ q_bc = q_ac (Hamilton product)
- Euler angles: [roll, pitch, yaw] in radians (ZYX/3-2-1 convention)
"""

import numpy as np
from numpy.typing import NDArray


def _check_quat(q: NDArray[np.float64], name: str = "q") -> NDArray[np.float64]:
    q = np.asarray(q, dtype=np.float64)
    if q.shape != (4,):
        raise ValueError(f"Expected 4-element quaternion {name}, got shape {q.shape}")
    return q


def quat_normalize(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Normalize a quaternion to unit norm.

    Args:
        q: Quaternion [qw, qx, qy, qz], not necessarily unit.

    Returns:
        Unit quaternion with the same direction as q.

    Raises:
        ValueError: If q is not a 4-element array or has (near) zero norm.

    Example:
        >>> quat_normalize(np.array([2.0, 0.0, 0.0, 0.0]))
        array([1., 0., 0., 0.])
    """
    q = _check_quat(q)
    norm = np.linalg.norm(q)
    if not np.isfinite(norm) or norm < 1e-12:
        raise ValueError(f"Cannot normalize quaternion with norm {norm}")
    return q / norm


def quat_conjugate(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Return the conjugate [qw, -qx, -qy, -qz] (the inverse of a unit quaternion)."""
    q = _check_quat(q)
    return np.array([q[0], -q[1], -q[2], -q[3]], dtype=np.float64)


def quat_multiply(p: NDArray[np.float64], q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Hamilton product p ⊗ q.

    If p rotates frame B into A and q rotates frame C into B, then p ⊗ q
    rotates C into A. Rotation matrices compose the same way:
    R(p ⊗ q) = R(p) @ R(q).

    Args:
        p: Left quaternion [pw, px, py, pz].
        q: Right quaternion [qw, qx, qy, qz].

    Returns:
        Product quaternion (not renormalized).
    """
    p = _check_quat(p, "p")
    q = _check_quat(q, "q")

    pw, px, py, pz = p
    qw, qx, qy, qz = q

    return np.array(
        [
            pw * qw - px * qx - py * qy - pz * qz,
            pw * qx + px * qw + py * qz - pz * qy,
            pw * qy - px * qz + py * qw + pz * qx,
            pw * qz + px * qy - py * qx + pz * qw,
        ],
        dtype=np.float64,
    )


def quat_from_small_rotation(theta: NDArray[np.float64]) -> NDArray[np.float64]:
    """First-order quaternion for a small rotation vector.

    Builds [1, θx/2, θy/2, θz/2] and normalizes it. This is the incremental
    rotation used for one step of gyro integration, with θ = ω·Δt.

    Args:
        theta: Rotation vector (3,), radians.

    Returns:
        Unit quaternion.
    """
    theta = np.asarray(theta, dtype=np.float64)
    if theta.shape != (3,):
        raise ValueError(f"theta must have shape (3,), got {theta.shape}")

    dq = np.array([1.0, 0.5 * theta[0], 0.5 * theta[1], 0.5 * theta[2]])
    return dq / np.linalg.norm(dq)


def quat_from_axis_angle(axis: NDArray[np.float64], angle: float) -> NDArray[np.float64]:
    """Exact quaternion for a rotation of `angle` radians about `axis`."""
    axis = np.asarray(axis, dtype=np.float64)
    if axis.shape != (3,):
        raise ValueError(f"axis must have shape (3,), got {axis.shape}")
    norm = np.linalg.norm(axis)
    if norm < 1e-12:
        raise ValueError("axis must be non-zero")

    half = 0.5 * angle
    xyz = np.sin(half) * axis / norm
    return np.array([np.cos(half), xyz[0], xyz[1], xyz[2]], dtype=np.float64)


def quat_align_sign(
    q: NDArray[np.float64],
    reference: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Choose the sign of q that agrees with a reference quaternion.

    q and -q encode the same rotation. Filters that average or difference
    quaternions need consecutive values on the same hemisphere, so a newly
    observed quaternion is negated when its dot product with the current
    estimate is negative.

    Args:
        q: Quaternion to align.
        reference: Quaternion defining the hemisphere.

    Returns:
        q if dot(q, reference) >= 0, otherwise -q.

    Example:
        >>> quat_align_sign(np.array([-1.0, 0, 0, 0]), np.array([1.0, 0, 0, 0]))
        array([ 1., -0., -0., -0.])
    """
    q = _check_quat(q)
    reference = _check_quat(reference, "reference")

    if float(np.dot(q, reference)) < 0.0:
        return -q
    return q.copy()


def quat_angle_between(p: NDArray[np.float64], q: NDArray[np.float64]) -> float:
    """Rotation angle (radians, in [0, π]) separating two orientations.

    Insensitive to the sign ambiguity of either quaternion.
    """
    p = quat_normalize(p)
    q = quat_normalize(q)
    dot = abs(float(np.dot(p, q)))
    return float(2.0 * np.arccos(np.clip(dot, 0.0, 1.0)))


def quat_to_rotation_matrix(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert quaternion to rotation matrix.

    The quaternion is normalized before conversion, so state-vector
    quaternions that drifted off the unit sphere can be passed directly.

    Args:
        q: Quaternion as numpy array [qw, qx, qy, qz].

    Returns:
        3x3 rotation matrix R such that v_map = R @ v_body.

    Raises:
        ValueError: If q is not a 4-element array.

    Example:
        >>> R = quat_to_rotation_matrix(np.array([1.0, 0.0, 0.0, 0.0]))
        >>> np.allclose(R, np.eye(3))
        True
    """
    qw, qx, qy, qz = quat_normalize(q)

    R = np.array(
        [
            [
                1.0 - 2.0 * (qy * qy + qz * qz),
                2.0 * (qx * qy - qw * qz),
                2.0 * (qx * qz + qw * qy),
            ],
            [
                2.0 * (qx * qy + qw * qz),
                1.0 - 2.0 * (qx * qx + qz * qz),
                2.0 * (qy * qz - qw * qx),
            ],
            [
                2.0 * (qx * qz - qw * qy),
                2.0 * (qy * qz + qw * qx),
                1.0 - 2.0 * (qx * qx + qy * qy),
            ],
        ],
        dtype=np.float64,
    )

    return R


def rotation_matrix_to_quat(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert rotation matrix to quaternion.

    Extracts a unit quaternion from a 3x3 rotation matrix using
    Shepperd's method for numerical stability. The sign of the result is
    not canonicalized; use quat_align_sign when continuity matters.

    Args:
        R: 3x3 rotation matrix (orthogonal matrix in SO(3)).

    Returns:
        Unit quaternion as numpy array [qw, qx, qy, qz].

    Raises:
        ValueError: If R is not a 3x3 matrix.
    """
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError(f"Expected 3x3 matrix, got shape {R.shape}")

    # Shepperd's method: choose largest diagonal element for stability
    trace = np.trace(R)

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        qw = 0.25 / s
        qx = (R[2, 1] - R[1, 2]) * s
        qy = (R[0, 2] - R[2, 0]) * s
        qz = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        qw = (R[2, 1] - R[1, 2]) / s
        qx = 0.25 * s
        qy = (R[0, 1] + R[1, 0]) / s
        qz = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        qw = (R[0, 2] - R[2, 0]) / s
        qx = (R[0, 1] + R[1, 0]) / s
        qy = 0.25 * s
        qz = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        qw = (R[1, 0] - R[0, 1]) / s
        qx = (R[0, 2] + R[2, 0]) / s
        qy = (R[1, 2] + R[2, 1]) / s
        qz = 0.25 * s

    q = np.array([qw, qx, qy, qz], dtype=np.float64)

    return q / np.linalg.norm(q)


def euler_to_quat(
    roll: float,
    pitch: float,
    yaw: float,
) -> NDArray[np.float64]:
    """Convert roll-pitch-yaw Euler angles (ZYX convention) to a unit quaternion.

    Example:
        >>> q = euler_to_quat(0.0, 0.0, np.pi / 2)  # 90° yaw
        >>> np.allclose(q, [np.sqrt(0.5), 0.0, 0.0, np.sqrt(0.5)])
        True
    """
    cr = np.cos(roll / 2.0)
    sr = np.sin(roll / 2.0)
    cp = np.cos(pitch / 2.0)
    sp = np.sin(pitch / 2.0)
    cy = np.cos(yaw / 2.0)
    sy = np.sin(yaw / 2.0)

    qw = cr * cp * cy + sr * sp * sy
    qx = sr * cp * cy - cr * sp * sy
    qy = cr * sp * cy + sr * cp * sy
    qz = cr * cp * sy - sr * sp * cy

    return np.array([qw, qx, qy, qz], dtype=np.float64)


def quat_to_euler(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert quaternion to [roll, pitch, yaw] (ZYX convention).

    Pitch is clamped at ±90° (gimbal lock).
    """
    qw, qx, qy, qz = quat_normalize(q)

    roll = np.arctan2(2.0 * (qw * qx + qy * qz), 1.0 - 2.0 * (qx * qx + qy * qy))

    # Clamp to avoid numerical issues with arcsin
    sin_pitch = np.clip(2.0 * (qw * qy - qz * qx), -1.0, 1.0)
    pitch = np.arcsin(sin_pitch)

    yaw = np.arctan2(2.0 * (qw * qz + qx * qy), 1.0 - 2.0 * (qy * qy + qz * qz))

    return np.array([roll, pitch, yaw], dtype=np.float64)
