"""Type definitions for scan matching.

Key types:
    - PointCloud3D: Type alias for 3D point clouds
    - RegistrationResult: Output of one scan-to-map alignment
"""

from dataclasses import dataclass

import numpy as np


# Shape (N, 3), or (N, k) with k >= 3 where the first three columns are xyz (meters)
PointCloud3D = np.ndarray


@dataclass(frozen=True)
class RegistrationResult:
    """
    Result of aligning a point cloud against a reference map.

    Attributes:
        aligned: Input cloud transformed by `transform`, same shape as the input.
        transform: Refined 4x4 homogeneous transform (cloud frame -> map frame).
        converged: Whether the matcher met its convergence criterion.
        fitness: Mean squared correspondence distance after alignment (m²);
            lower is better, inf when no correspondences were found.
        iterations: Number of iterations executed.

    Example:
        >>> result = RegistrationResult(
        ...     aligned=np.zeros((0, 3)),
        ...     transform=np.eye(4),
        ...     converged=True,
        ...     fitness=0.0,
        ...     iterations=1,
        ... )
        >>> result.converged
        True
    """

    aligned: PointCloud3D
    transform: np.ndarray
    converged: bool = True
    fitness: float = 0.0
    iterations: int = 0

    def __post_init__(self) -> None:
        """Validate the result structure."""
        transform = np.asarray(self.transform, dtype=float)
        if transform.shape != (4, 4):
            raise ValueError(f"transform must have shape (4, 4), got {transform.shape}")
        if not np.all(np.isfinite(transform)):
            raise ValueError("transform must be finite")

        aligned = np.asarray(self.aligned, dtype=float)
        if aligned.ndim != 2 or aligned.shape[1] < 3:
            raise ValueError(f"aligned must have shape (N, k>=3), got {aligned.shape}")

        if self.iterations < 0:
            raise ValueError(f"iterations must be non-negative, got {self.iterations}")

        object.__setattr__(self, "transform", transform)
        object.__setattr__(self, "aligned", aligned)
