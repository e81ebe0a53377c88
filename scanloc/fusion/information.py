"""Information-form fusion of independent Gaussian estimates.

Two independent estimates (μa, Σa) and (μb, Σb) of the same quantity are
combined by adding precisions:

    Σ = (Σa⁻¹ + Σb⁻¹)⁻¹
    μ = Σ Σa⁻¹ μa + Σ Σb⁻¹ μb

All three inversions are exact and checked: a singular or ill-conditioned
matrix raises DegenerateCovarianceError instead of producing NaNs.

For pose beliefs the quaternion block needs one extra step. q and -q are
the same rotation but average to something meaningless, so the second
belief is moved to the hemisphere of the first before fusing.
"""

from typing import Tuple

import numpy as np

from scanloc.coords.rotations import quat_align_sign
from scanloc.fusion.types import PoseBelief
from scanloc.utils.linalg import MAX_CONDITION, invert_covariance, symmetrize


# Sign flip of the quaternion block of a 7-D pose vector
_QUAT_FLIP = np.diag([1.0, 1.0, 1.0, -1.0, -1.0, -1.0, -1.0])


def fuse_gaussians(
    mean_a: np.ndarray,
    cov_a: np.ndarray,
    mean_b: np.ndarray,
    cov_b: np.ndarray,
    max_condition: float = MAX_CONDITION,
) -> Tuple[np.ndarray, np.ndarray]:
    """Precision-weighted combination of two independent Gaussians.

    Args:
        mean_a: Mean of the first estimate, shape (n,).
        cov_a: Covariance of the first estimate, shape (n, n).
        mean_b: Mean of the second estimate, shape (n,).
        cov_b: Covariance of the second estimate, shape (n, n).
        max_condition: Conditioning limit for every inversion.

    Returns:
        Tuple of (fused_mean, fused_cov).

    Raises:
        ValueError: If shapes disagree.
        DegenerateCovarianceError: If any covariance (or the summed
            precision) cannot be inverted safely.

    Example:
        >>> mean, cov = fuse_gaussians(
        ...     np.array([0.0]), np.array([[1.0]]),
        ...     np.array([2.0]), np.array([[1.0]]),
        ... )
        >>> mean, cov
        (array([1.]), array([[0.5]]))
    """
    mean_a = np.asarray(mean_a, dtype=float)
    mean_b = np.asarray(mean_b, dtype=float)
    cov_a = np.asarray(cov_a, dtype=float)
    cov_b = np.asarray(cov_b, dtype=float)

    n = mean_a.shape[0] if mean_a.ndim == 1 else -1
    if mean_a.ndim != 1 or mean_b.shape != mean_a.shape:
        raise ValueError(
            f"means must be 1D with equal shape, got {mean_a.shape} and {mean_b.shape}"
        )
    if cov_a.shape != (n, n) or cov_b.shape != (n, n):
        raise ValueError(
            f"covariances must have shape ({n}, {n}), got {cov_a.shape} and {cov_b.shape}"
        )

    info_a = invert_covariance(cov_a, "first covariance", max_condition)
    info_b = invert_covariance(cov_b, "second covariance", max_condition)

    cov = invert_covariance(info_a + info_b, "fused precision", max_condition)
    mean = cov @ info_a @ mean_a + cov @ info_b @ mean_b

    return mean, symmetrize(cov)


def align_belief_sign(belief: PoseBelief, reference_quat: np.ndarray) -> PoseBelief:
    """Move a pose belief to the quaternion hemisphere of a reference.

    If the belief's quaternion has a negative dot product with the
    reference, the quaternion block of the mean is negated and the
    covariance is transformed accordingly (D Σ D with
    D = diag(1, 1, 1, -1, -1, -1, -1)), which flips the sign of the
    position/orientation cross terms. Otherwise the belief is returned as is.
    """
    q = belief.mean[3:7]
    if np.array_equal(quat_align_sign(q, reference_quat), q):
        return belief

    return PoseBelief(
        mean=_QUAT_FLIP @ belief.mean,
        cov=_QUAT_FLIP @ belief.cov @ _QUAT_FLIP,
    )


def fuse_pose_beliefs(
    a: PoseBelief,
    b: PoseBelief,
    max_condition: float = MAX_CONDITION,
) -> PoseBelief:
    """Fuse two independent pose beliefs.

    b is first sign-aligned to a's quaternion; the fused quaternion is
    left unnormalized (callers normalize it when building a transform).
    """
    b = align_belief_sign(b, a.mean[3:7])
    mean, cov = fuse_gaussians(a.mean, a.cov, b.mean, b.cov, max_condition)
    return PoseBelief(mean=mean, cov=cov)
