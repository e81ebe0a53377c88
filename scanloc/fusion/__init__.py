"""Fusion of pose beliefs from the inertial and odometry filters."""

from scanloc.fusion.information import align_belief_sign, fuse_gaussians, fuse_pose_beliefs
from scanloc.fusion.types import POSE_BELIEF_DIM, PoseBelief
from scanloc.utils.linalg import DegenerateCovarianceError, invert_covariance

__all__ = [
    "PoseBelief",
    "POSE_BELIEF_DIM",
    "fuse_gaussians",
    "align_belief_sign",
    "fuse_pose_beliefs",
    "invert_covariance",
    "DegenerateCovarianceError",
]
