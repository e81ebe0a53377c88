"""
Covariance conditioning utilities.

Provides functions for:
- Symmetrizing covariance matrices
- Flooring eigenvalues so sigma-point generation stays well defined
- Checked inversion of covariance / precision matrices

Inversion is the one place where a filter can silently turn an
ill-conditioned belief into NaNs. Every inverse taken by the estimators
goes through invert_covariance, which reports degeneracy as
DegenerateCovarianceError instead.
"""

import numpy as np


# Conditioning constants
EIGENVALUE_FLOOR = 1e-9  # Smallest eigenvalue kept by ensure_positive_definite
MAX_CONDITION = 1e12  # Largest condition number accepted by invert_covariance


class DegenerateCovarianceError(np.linalg.LinAlgError):
    """A covariance required for inversion is singular, ill-conditioned or non-finite."""


def symmetrize(P: np.ndarray) -> np.ndarray:
    """Return 0.5 * (P + Pᵀ)."""
    P = np.asarray(P, dtype=float)
    return 0.5 * (P + P.T)


def check_finite(name: str, *arrays: np.ndarray) -> None:
    """
    Raise DegenerateCovarianceError if any array holds NaN or Inf.

    Args:
        name: Label used in the error message.
        *arrays: Arrays to check.
    """
    for array in arrays:
        if not np.all(np.isfinite(array)):
            raise DegenerateCovarianceError(f"{name} contains non-finite values")


def ensure_positive_definite(
    P: np.ndarray,
    eps: float = EIGENVALUE_FLOOR,
) -> np.ndarray:
    """
    Clamp the eigenvalues of a covariance matrix to at least eps.

    Round-off in repeated predict/correct cycles can leave a covariance
    with tiny negative eigenvalues, which breaks the Cholesky factorization
    used for sigma points. The matrix is symmetrized, decomposed with eigh,
    floored and recomposed.

    Args:
        P: Covariance matrix (n×n).
        eps: Eigenvalue floor.

    Returns:
        Symmetric positive definite matrix (n×n).

    Raises:
        DegenerateCovarianceError: If P contains non-finite values.
    """
    P = symmetrize(P)
    check_finite("covariance", P)

    eigenvalues, eigenvectors = np.linalg.eigh(P)
    if np.all(eigenvalues >= eps):
        return P

    eigenvalues = np.maximum(eigenvalues, eps)
    return symmetrize(eigenvectors @ np.diag(eigenvalues) @ eigenvectors.T)


def invert_covariance(
    P: np.ndarray,
    name: str = "covariance",
    max_condition: float = MAX_CONDITION,
) -> np.ndarray:
    """
    Invert a covariance matrix, refusing degenerate input.

    Args:
        P: Square matrix to invert.
        name: Label used in error messages (e.g. "innovation covariance").
        max_condition: Largest acceptable 2-norm condition number.

    Returns:
        The exact inverse of P.

    Raises:
        ValueError: If P is not square.
        DegenerateCovarianceError: If P is non-finite, singular or its
            condition number exceeds max_condition.

    Example:
        >>> invert_covariance(np.diag([2.0, 4.0]))
        array([[0.5 , 0.  ],
               [0.  , 0.25]])
    """
    P = np.asarray(P, dtype=float)
    if P.ndim != 2 or P.shape[0] != P.shape[1]:
        raise ValueError(f"{name} must be square, got shape {P.shape}")

    check_finite(name, P)

    condition = np.linalg.cond(P)
    if not np.isfinite(condition) or condition > max_condition:
        raise DegenerateCovarianceError(
            f"{name} is ill-conditioned (condition number {condition:.3e} > {max_condition:.1e})"
        )

    try:
        P_inv = np.linalg.inv(P)
    except np.linalg.LinAlgError as e:
        raise DegenerateCovarianceError(f"{name} is singular: {e}") from e

    check_finite(f"inverse of {name}", P_inv)
    return P_inv
