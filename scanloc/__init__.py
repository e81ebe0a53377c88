"""
scanloc: dual-filter 6-DoF pose estimation with scan-matching correction.

Subpackages:
    coords        quaternion algebra and SE(3) transforms
    estimators    unscented Kalman filter engine
    models        inertial and odometry motion models
    fusion        information-form fusion of pose beliefs
    slam          scan matcher protocol and reference 3D ICP
    localization  PoseEstimator and its configuration
    eval          error metrics
    utils         covariance conditioning and checked inversion
"""

__version__ = "0.1.0"
