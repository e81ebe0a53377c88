"""
Evaluation metrics for pose tracking.

Position and rotation errors against ground truth, summary statistics,
and the normalized innovation squared (NIS) of filter corrections.
"""

from typing import Dict, Optional, Union

import numpy as np

from scanloc.coords.rotations import quat_angle_between


def compute_position_errors(
    truth: np.ndarray, estimated: np.ndarray
) -> np.ndarray:
    """
    Compute position errors between true and estimated positions.

    Args:
        truth: True positions, shape (N, 3)
        estimated: Estimated positions, shape (N, 3)

    Returns:
        errors: Position error vectors estimated - truth, shape (N, 3)

    Raises:
        ValueError: If inputs have incompatible shapes
    """
    truth = np.asarray(truth, dtype=float)
    estimated = np.asarray(estimated, dtype=float)

    if truth.shape != estimated.shape:
        raise ValueError(
            f"Shape mismatch: truth {truth.shape} vs estimated {estimated.shape}"
        )

    return estimated - truth


def compute_rotation_errors(
    truth_quats: np.ndarray, estimated_quats: np.ndarray
) -> np.ndarray:
    """
    Rotation error angles between true and estimated orientations.

    The angle of q_true⁻¹ ⊗ q_est, so q and -q give the same error.

    Args:
        truth_quats: True quaternions [qw, qx, qy, qz], shape (N, 4)
        estimated_quats: Estimated quaternions, shape (N, 4)

    Returns:
        Error angles in radians, shape (N,)
    """
    truth_quats = np.asarray(truth_quats, dtype=float)
    estimated_quats = np.asarray(estimated_quats, dtype=float)

    if truth_quats.shape != estimated_quats.shape or truth_quats.ndim != 2 or truth_quats.shape[1] != 4:
        raise ValueError(
            f"Expected two (N, 4) quaternion arrays, got {truth_quats.shape} and {estimated_quats.shape}"
        )

    return np.array(
        [quat_angle_between(q_true, q_est) for q_true, q_est in zip(truth_quats, estimated_quats)]
    )


def compute_rmse(errors: np.ndarray, axis: Optional[int] = None) -> Union[float, np.ndarray]:
    """
    Compute Root Mean Square Error (RMSE).

    Args:
        errors: Error vectors, shape (N, d) or (N,)
        axis: Axis along which to compute RMSE
              None: scalar RMSE across all dimensions
              0: per-dimension RMSE
              1: per-sample RMSE

    Returns:
        rmse: RMSE value(s)
    """
    errors = np.asarray(errors)

    if axis is None:
        return float(np.sqrt(np.mean(errors**2)))
    return np.sqrt(np.mean(errors**2, axis=axis))


def compute_error_stats(errors: np.ndarray) -> Dict[str, float]:
    """
    Compute error statistics.

    Args:
        errors: Error vectors, shape (N, d) (magnitudes are taken per row)
            or error values, shape (N,)

    Returns:
        stats: Dictionary with keys 'mean', 'median', 'std', 'rmse',
               'p90', 'p95' and 'max'
    """
    errors = np.asarray(errors, dtype=float)
    if errors.size == 0:
        raise ValueError("errors is empty")

    if errors.ndim > 1:
        error_magnitudes = np.linalg.norm(errors, axis=1)
    else:
        error_magnitudes = np.abs(errors)

    return {
        "mean": float(np.mean(error_magnitudes)),
        "median": float(np.median(error_magnitudes)),
        "std": float(np.std(error_magnitudes)),
        "rmse": float(np.sqrt(np.mean(error_magnitudes**2))),
        "p90": float(np.percentile(error_magnitudes, 90)),
        "p95": float(np.percentile(error_magnitudes, 95)),
        "max": float(np.max(error_magnitudes)),
    }


def compute_nis(innovation: np.ndarray, S: np.ndarray) -> np.ndarray:
    """
    Compute Normalized Innovation Squared (NIS).

        NIS = νᵀ S⁻¹ ν

    For a consistent filter NIS follows a chi-squared distribution with m
    degrees of freedom (measurement dimension).

    Args:
        innovation: Innovation vectors, shape (N, m)
        S: Innovation covariances, shape (N, m, m)

    Returns:
        nis: NIS values, shape (N,); NaN where S is singular
    """
    innovation = np.asarray(innovation, dtype=float)
    S = np.asarray(S, dtype=float)

    if innovation.ndim == 1:
        innovation = innovation.reshape(1, -1)

    N, m = innovation.shape
    if S.shape != (N, m, m):
        raise ValueError(f"S must have shape ({N}, {m}, {m}), got {S.shape}")

    nis = np.zeros(N)
    for i in range(N):
        try:
            nis[i] = innovation[i] @ np.linalg.solve(S[i], innovation[i])
        except np.linalg.LinAlgError:
            nis[i] = np.nan

    return nis
