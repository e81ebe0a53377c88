"""
Numerical utilities shared by the estimators and the fusion step.
"""

from .linalg import (
    EIGENVALUE_FLOOR,
    MAX_CONDITION,
    DegenerateCovarianceError,
    check_finite,
    ensure_positive_definite,
    invert_covariance,
    symmetrize,
)

__all__ = [
    "EIGENVALUE_FLOOR",
    "MAX_CONDITION",
    "DegenerateCovarianceError",
    "check_finite",
    "ensure_positive_definite",
    "invert_covariance",
    "symmetrize",
]
