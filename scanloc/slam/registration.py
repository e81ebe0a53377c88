"""Scan-to-map registration for pose correction.

The pose estimator only needs one operation from a scan matcher:

    align(cloud, initial_guess) -> RegistrationResult

Any object providing it satisfies the ScanMatcher protocol; the estimator
keeps a reference to it and never copies or closes it, so the caller may
share one matcher (and its map) between several estimators.

IcpRegistration is the reference implementation: point-to-point ICP in
3D against a fixed target map.

    1. Transform the cloud by the current estimate.
    2. Match every point to its nearest map point (KD-tree), rejecting
       pairs farther than max_correspondence_distance.
    3. Solve the best rigid increment in closed form (SVD / Kabsch).
    4. Compose and repeat until the increment is below tolerance.

Key functions:
    - find_correspondences_3d: Nearest-neighbor matching with distance gating
    - align_svd_3d: Closed-form SE(3) alignment of corresponding points
"""

from typing import Optional, Protocol, Tuple, runtime_checkable

import numpy as np
from scipy.spatial import KDTree

from scanloc.coords.transforms import transform_points
from scanloc.slam.types import PointCloud3D, RegistrationResult


class ScanMatchError(RuntimeError):
    """Scan matching did not converge and the caller asked to reject such results."""


@runtime_checkable
class ScanMatcher(Protocol):
    """Anything that can align a point cloud to a map given an initial guess."""

    def align(self, cloud: PointCloud3D, initial_guess: np.ndarray) -> RegistrationResult:
        ...


def _check_cloud(points: np.ndarray, name: str) -> np.ndarray:
    points = np.asarray(points, dtype=float)
    if points.ndim != 2 or points.shape[1] < 3:
        raise ValueError(f"{name} must have shape (N, k>=3), got {points.shape}")
    return points


def find_correspondences_3d(
    source_points: np.ndarray,
    target_tree: KDTree,
    target_points: np.ndarray,
    max_distance: Optional[float] = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Find nearest-neighbor correspondences with distance-based gating.

    Args:
        source_points: Source points, shape (N, 3).
        target_tree: KD-tree built over target_points.
        target_points: Target points, shape (M, 3).
        max_distance: Maximum correspondence distance in meters.
                      If None, all correspondences are accepted.

    Returns:
        Tuple of (matched_source, matched_target, distances), each with
        K <= N rows.
    """
    if source_points.shape[0] == 0 or target_points.shape[0] == 0:
        return np.empty((0, 3)), np.empty((0, 3)), np.empty((0,))

    distances, indices = target_tree.query(source_points, k=1)

    if max_distance is not None:
        valid_mask = distances <= max_distance
        distances = distances[valid_mask]
        indices = indices[valid_mask]
        matched_source = source_points[valid_mask]
    else:
        matched_source = source_points

    return matched_source, target_points[indices], distances


def align_svd_3d(
    source_points: np.ndarray,
    target_points: np.ndarray,
) -> np.ndarray:
    """
    Compute the rigid transform that best maps source onto target points.

    Minimizes Σ ||R sᵢ + t - tᵢ||² in closed form:
        1. Center both sets on their centroids.
        2. H = Σ s̃ᵢ t̃ᵢᵀ,  H = U Σ Vᵀ.
        3. R = V diag(1, 1, det(V Uᵀ)) Uᵀ  (reflection guard).
        4. t = t̄ - R s̄.

    Args:
        source_points: Source points, shape (N, 3).
        target_points: Corresponding target points, shape (N, 3).

    Returns:
        4x4 homogeneous transform.

    Raises:
        ValueError: If the point sets differ in shape or have fewer than 3 points.

    Example:
        >>> source = np.array([[0.0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1]])
        >>> T = align_svd_3d(source, source + [2.0, 3.0, 4.0])
        >>> np.allclose(T[:3, 3], [2, 3, 4])
        True
    """
    if source_points.shape != target_points.shape:
        raise ValueError(
            f"Point clouds must have same shape. "
            f"Got source={source_points.shape}, target={target_points.shape}"
        )

    N = source_points.shape[0]
    if N < 3:
        raise ValueError(f"Need at least 3 correspondences for SVD alignment, got {N}")

    centroid_source = np.mean(source_points, axis=0)
    centroid_target = np.mean(target_points, axis=0)

    H = (source_points - centroid_source).T @ (target_points - centroid_target)
    U, _, Vt = np.linalg.svd(H)

    D = np.eye(3)
    D[2, 2] = np.sign(np.linalg.det(Vt.T @ U.T)) or 1.0
    R = Vt.T @ D @ U.T

    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = centroid_target - R @ centroid_source
    return T


class IcpRegistration:
    """
    Point-to-point ICP against a fixed target map.

    Attributes:
        max_iterations: Maximum number of ICP iterations.
        tolerance: Convergence threshold on the size of the last increment
            (translation norm plus rotation angle).
        max_correspondence_distance: Gating distance in meters, or None.
        min_correspondences: Fewer matched pairs than this stops ICP as
            not converged.

    Example:
        >>> target = np.random.default_rng(0).uniform(-5, 5, size=(500, 3))
        >>> icp = IcpRegistration(target)
        >>> result = icp.align(target - [0.2, 0.0, 0.0], np.eye(4))
        >>> np.allclose(result.transform[:3, 3], [0.2, 0, 0], atol=1e-3)
        True
    """

    def __init__(
        self,
        target: PointCloud3D,
        max_iterations: int = 50,
        tolerance: float = 1e-6,
        max_correspondence_distance: Optional[float] = None,
        min_correspondences: int = 3,
    ):
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        if min_correspondences < 3:
            raise ValueError(f"min_correspondences must be >= 3, got {min_correspondences}")

        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.max_correspondence_distance = max_correspondence_distance
        self.min_correspondences = min_correspondences
        self.set_target(target)

    def set_target(self, target: PointCloud3D) -> None:
        """Replace the reference map and rebuild its KD-tree."""
        target = _check_cloud(target, "target")
        if target.shape[0] == 0:
            raise ValueError("target is empty")
        self.target = target[:, :3].copy()
        self._tree = KDTree(self.target)

    def align(self, cloud: PointCloud3D, initial_guess: np.ndarray) -> RegistrationResult:
        """
        Align a cloud to the target map starting from initial_guess.

        Args:
            cloud: Points in the sensor frame, shape (N, k>=3).
            initial_guess: 4x4 transform sensor -> map.

        Returns:
            RegistrationResult; when ICP stops early for lack of
            correspondences the last estimate is returned with
            converged=False.

        Raises:
            ValueError: If the cloud is empty or has an invalid shape.
        """
        cloud = _check_cloud(cloud, "cloud")
        if cloud.shape[0] == 0:
            raise ValueError("cloud is empty")

        initial_guess = np.asarray(initial_guess, dtype=float)
        if initial_guess.shape != (4, 4):
            raise ValueError(f"initial_guess must have shape (4, 4), got {initial_guess.shape}")

        source = cloud[:, :3]
        T = initial_guess.copy()
        fitness = np.inf
        converged = False
        iterations = 0

        for iteration in range(self.max_iterations):
            iterations = iteration + 1
            moved = transform_points(T, source)

            matched_source, matched_target, distances = find_correspondences_3d(
                moved, self._tree, self.target, self.max_correspondence_distance
            )
            if matched_source.shape[0] < self.min_correspondences:
                break

            fitness = float(np.mean(distances**2))

            delta = align_svd_3d(matched_source, matched_target)
            T = delta @ T

            # Rotation angle of the increment from its trace
            cos_angle = np.clip((np.trace(delta[:3, :3]) - 1.0) / 2.0, -1.0, 1.0)
            step = np.linalg.norm(delta[:3, 3]) + np.arccos(cos_angle)
            if step < self.tolerance:
                converged = True
                break

        if converged:
            # Fitness at the final estimate
            _, _, distances = find_correspondences_3d(
                transform_points(T, source), self._tree, self.target,
                self.max_correspondence_distance,
            )
            if distances.shape[0] > 0:
                fitness = float(np.mean(distances**2))

        return RegistrationResult(
            aligned=transform_points(T, cloud),
            transform=T,
            converged=converged,
            fitness=fitness,
            iterations=iterations,
        )
