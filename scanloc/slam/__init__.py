"""Scan matching collaborators for the pose estimator."""

from scanloc.slam.registration import (
    IcpRegistration,
    ScanMatcher,
    ScanMatchError,
    align_svd_3d,
    find_correspondences_3d,
)
from scanloc.slam.types import PointCloud3D, RegistrationResult

__all__ = [
    # Types
    "PointCloud3D",
    "RegistrationResult",
    # Protocol
    "ScanMatcher",
    "ScanMatchError",
    # Reference ICP
    "IcpRegistration",
    "find_correspondences_3d",
    "align_svd_3d",
]
