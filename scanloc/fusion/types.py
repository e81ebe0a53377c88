"""Data types for pose fusion.

A pose belief is a 7-D Gaussian over [px, py, pz, qw, qx, qy, qz], the
observable pose shared by the inertial and odometry filters.
"""

from dataclasses import dataclass

import numpy as np

from scanloc.coords.rotations import quat_normalize
from scanloc.coords.transforms import pose_to_matrix


POSE_BELIEF_DIM = 7


@dataclass(frozen=True)
class PoseBelief:
    """Gaussian belief over a 6-DoF pose.

    Attributes:
        mean: Pose vector [px, py, pz, qw, qx, qy, qz], shape (7,).
        cov: Covariance of the pose vector, shape (7, 7), symmetric.

    The quaternion part of `mean` is kept as given (it may be slightly off
    unit norm after fusion); use `quat` for the normalized orientation.

    Example:
        >>> belief = PoseBelief(
        ...     mean=np.array([1.0, 2.0, 0.0, 1.0, 0.0, 0.0, 0.0]),
        ...     cov=np.eye(7) * 0.01,
        ... )
        >>> belief.position
        array([1., 2., 0.])
    """

    mean: np.ndarray
    cov: np.ndarray

    def __post_init__(self) -> None:
        """Validate and freeze copies of the arrays."""
        mean = np.array(self.mean, dtype=float)
        cov = np.array(self.cov, dtype=float)

        if mean.shape != (POSE_BELIEF_DIM,):
            raise ValueError(f"mean must have shape (7,), got {mean.shape}")
        if cov.shape != (POSE_BELIEF_DIM, POSE_BELIEF_DIM):
            raise ValueError(f"cov must have shape (7, 7), got {cov.shape}")
        if not np.all(np.isfinite(mean)) or not np.all(np.isfinite(cov)):
            raise ValueError("PoseBelief mean and cov must be finite")
        if not np.allclose(cov, cov.T, rtol=1e-8, atol=1e-10):
            raise ValueError("PoseBelief cov must be symmetric")

        mean.setflags(write=False)
        cov.setflags(write=False)
        object.__setattr__(self, "mean", mean)
        object.__setattr__(self, "cov", cov)

    @property
    def position(self) -> np.ndarray:
        return self.mean[0:3].copy()

    @property
    def quat(self) -> np.ndarray:
        """Normalized orientation [qw, qx, qy, qz]."""
        return quat_normalize(self.mean[3:7])

    def matrix(self) -> np.ndarray:
        """4x4 homogeneous transform of the mean pose."""
        return pose_to_matrix(self.position, self.quat)
