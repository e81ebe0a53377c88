"""
Evaluation module.

Error metrics for comparing estimated trajectories with ground truth.
"""

from .metrics import (
    compute_error_stats,
    compute_nis,
    compute_position_errors,
    compute_rmse,
    compute_rotation_errors,
)

__all__ = [
    "compute_position_errors",
    "compute_rotation_errors",
    "compute_rmse",
    "compute_error_stats",
    "compute_nis",
]
