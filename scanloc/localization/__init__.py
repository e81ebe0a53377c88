"""
Dual-filter pose estimation against a point-cloud map.
"""

from scanloc.localization.config import PoseEstimatorConfig
from scanloc.localization.pose_estimator import (
    EstimatorMode,
    OdometryActive,
    OdometryInactive,
    PoseEstimator,
)

__all__ = [
    "PoseEstimator",
    "PoseEstimatorConfig",
    "EstimatorMode",
    "OdometryActive",
    "OdometryInactive",
]
