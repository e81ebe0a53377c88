"""
Recursive state estimators used by the pose estimator.

Available estimators:
    - Unscented Kalman Filter (UKF), generic over a MotionModel
"""

from scanloc.estimators.base import StateEstimator
from scanloc.estimators.unscented_kalman_filter import UnscentedKalmanFilter
from scanloc.utils.linalg import DegenerateCovarianceError

__all__ = [
    "StateEstimator",
    "UnscentedKalmanFilter",
    "DegenerateCovarianceError",
]
