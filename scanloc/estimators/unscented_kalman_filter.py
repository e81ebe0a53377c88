"""
Unscented Kalman Filter engine, generic over a motion model.

The filter keeps a Gaussian belief (mean, covariance) over a fixed-size
state vector and delegates all system-specific behavior to a MotionModel:

    model.predict_state(x, u, dt) -> x_next     (process step)
    model.observe(x)              -> z_pred     (measurement step)

Nonlinear steps such as quaternion composition are handled by propagating
deterministic sigma points through the model instead of linearizing it.

Implements:
    - Sigma point generation χ₀ = x̂, χᵢ = x̂ + δᵢ, χ_{i+n} = x̂ - δᵢ,
      δᵢ = i-th column of chol((n + λ) P)
    - Sigma point propagation through the process model
    - Correction with innovation covariance, cross-covariance and gain

Process noise is not fixed at construction: callers whose noise depends on
elapsed time or on the size of the motion set it before every predict()
with set_process_noise_cov().
"""

from typing import Optional, Tuple

import numpy as np

from scanloc.estimators.base import StateEstimator
from scanloc.models.motion_models import MotionModel
from scanloc.utils.linalg import (
    MAX_CONDITION,
    check_finite,
    ensure_positive_definite,
    invert_covariance,
    symmetrize,
)


class UnscentedKalmanFilter(StateEstimator):
    """
    Unscented Kalman Filter over a MotionModel.

    The default scaling (alpha=1, beta=0, kappa=1) gives λ = 1 and equal
    mean and covariance weights:
        W₀ = λ / (n + λ),   Wᵢ = 1 / (2 (n + λ))
    All weights are positive, which keeps the recombined covariance
    positive semi-definite even for strongly nonlinear models.

    Attributes:
        model: MotionModel providing predict_state() and observe().
        Q: Process noise covariance (n×n), overridable per call.
        R: Measurement noise covariance (m×m).
        alpha, beta, kappa: Sigma point scaling parameters.
        max_condition: Largest innovation-covariance condition number
            accepted during correct().
        state: Current mean x̂ (n,).
        covariance: Current covariance P (n×n).
        innovation: Innovation z - ẑ of the last correction, or None.
        innovation_covariance: Pzz + R of the last correction, or None.
    """

    def __init__(
        self,
        model: MotionModel,
        process_noise: np.ndarray,
        measurement_noise: np.ndarray,
        x0: np.ndarray,
        P0: np.ndarray,
        alpha: float = 1.0,
        beta: float = 0.0,
        kappa: float = 1.0,
        max_condition: float = MAX_CONDITION,
    ):
        """
        Initialize Unscented Kalman Filter.

        Args:
            model: Motion model defining the state, control and measurement
                dimensions and the process / measurement functions.
            process_noise: Initial process noise covariance (n×n).
            measurement_noise: Measurement noise covariance (m×m).
            x0: Initial state estimate (n,).
            P0: Initial state covariance (n×n).
            alpha: Spread of sigma points around the mean.
            beta: Prior-distribution parameter added to the central
                covariance weight.
            kappa: Secondary scaling parameter.
            max_condition: Conditioning limit for the innovation covariance.

        Raises:
            ValueError: If dimensions are inconsistent with the model or
                the scaling parameters give n + λ <= 0.
        """
        state_dim = model.state_dim
        super().__init__(state_dim)

        self.model = model
        self.control_dim = model.control_dim
        self.measurement_dim = model.measurement_dim

        x0 = np.asarray(x0, dtype=float)
        if x0.shape != (state_dim,):
            raise ValueError(f"x0 shape {x0.shape} inconsistent with state_dim {state_dim}")

        self.state = x0.copy()
        self.covariance = self._check_square(P0, state_dim, "P0")
        self.Q = self._check_square(process_noise, state_dim, "process_noise")
        self.R = self._check_square(measurement_noise, self.measurement_dim, "measurement_noise")

        self.alpha = alpha
        self.beta = beta
        self.kappa = kappa
        self.max_condition = max_condition

        self.innovation: Optional[np.ndarray] = None
        self.innovation_covariance: Optional[np.ndarray] = None

        self._compute_weights()

    @staticmethod
    def _check_square(M: np.ndarray, dim: int, name: str) -> np.ndarray:
        M = np.asarray(M, dtype=float)
        if M.shape != (dim, dim):
            raise ValueError(f"{name} shape {M.shape} inconsistent with dimension {dim}")
        return M.copy()

    def _compute_weights(self) -> None:
        """
        Compute weights for mean and covariance of sigma points.

        λ = α² (n + κ) - n
        Wm₀ = λ / (n + λ),  Wc₀ = Wm₀ + (1 - α² + β),  Wᵢ = 1 / (2 (n + λ))
        """
        n = self.state_dim
        lambda_ = self.alpha**2 * (n + self.kappa) - n
        if n + lambda_ <= 0:
            raise ValueError(
                f"Sigma point scaling gives n + lambda = {n + lambda_} <= 0; "
                "choose alpha/kappa so that alpha^2 * (n + kappa) > 0"
            )

        self.Wm = np.full(2 * n + 1, 1.0 / (2 * (n + lambda_)))
        self.Wm[0] = lambda_ / (n + lambda_)

        self.Wc = self.Wm.copy()
        self.Wc[0] = self.Wm[0] + (1 - self.alpha**2 + self.beta)

        self.lambda_ = lambda_

    def set_process_noise_cov(self, Q: np.ndarray) -> None:
        """Override the process noise used by the next predict() calls."""
        self.Q = self._check_square(Q, self.state_dim, "process_noise")

    def set_measurement_noise_cov(self, R: np.ndarray) -> None:
        """Override the measurement noise used by the next correct() calls."""
        self.R = self._check_square(R, self.measurement_dim, "measurement_noise")

    def _generate_sigma_points(self, x: np.ndarray, P: np.ndarray) -> np.ndarray:
        """
        Generate 2n+1 sigma points.

        Args:
            x: Mean state vector (n,).
            P: State covariance matrix (n×n), positive definite.

        Returns:
            Sigma points matrix (2n+1, n) where each row is a sigma point.
        """
        n = len(x)
        sigma_points = np.zeros((2 * n + 1, n))
        sigma_points[0] = x

        # Matrix square root (n + λ) P = L Lᵀ
        try:
            L = np.linalg.cholesky((n + self.lambda_) * P)
        except np.linalg.LinAlgError:
            # If Cholesky fails, use eigendecomposition
            eigenvalues, eigenvectors = np.linalg.eigh(symmetrize(P))
            L = eigenvectors @ np.diag(np.sqrt(np.maximum(eigenvalues, 0))) * np.sqrt(n + self.lambda_)

        for i in range(n):
            sigma_points[i + 1] = x + L[:, i]
            sigma_points[n + i + 1] = x - L[:, i]

        return sigma_points

    def _unscented_transform(self, sigma_points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Compute mean and covariance from sigma points using weighted average.

        Args:
            sigma_points: Matrix of sigma points (N, d).

        Returns:
            Tuple of (mean, covariance).
        """
        mean = self.Wm @ sigma_points

        diff = sigma_points - mean
        covariance = (self.Wc[:, np.newaxis] * diff).T @ diff

        return mean, covariance

    def predict(self, u: Optional[np.ndarray] = None, dt: float = 1.0) -> None:
        """
        Propagate the belief through the process model.

        Args:
            u: Control vector (control_dim,).
            dt: Time step passed to the model.

        Raises:
            ValueError: If u has the wrong shape.
            DegenerateCovarianceError: If the prediction produced non-finite
                values (the belief is left unchanged).
        """
        if u is not None:
            u = np.asarray(u, dtype=float)
            if u.shape != (self.control_dim,):
                raise ValueError(f"control shape {u.shape} inconsistent with control_dim {self.control_dim}")

        P = ensure_positive_definite(self.covariance)
        sigma_points = self._generate_sigma_points(self.state, P)

        sigma_points_pred = np.array([
            self.model.predict_state(sp, u, dt) for sp in sigma_points
        ])

        mean_pred, P_pred = self._unscented_transform(sigma_points_pred)
        P_pred = symmetrize(P_pred + self.Q)

        check_finite("predicted belief", mean_pred, P_pred)

        self.state = mean_pred
        self.covariance = P_pred

    def correct(self, z: np.ndarray) -> None:
        """
        Refine the belief with an observation.

        Computes predicted measurement ẑ and its covariance Pzz from sigma
        points, adds R, forms the cross-covariance Pxz and gain
        K = Pxz (Pzz + R)⁻¹, then
            x̂ ← x̂ + K (z - ẑ),   P ← P - K (Pzz + R) Kᵀ

        Args:
            z: Observation vector (measurement_dim,).

        Raises:
            ValueError: If z has the wrong shape.
            DegenerateCovarianceError: If the innovation covariance cannot be
                inverted safely or the update is non-finite (the belief is
                left unchanged).
        """
        z = np.asarray(z, dtype=float)
        if z.shape != (self.measurement_dim,):
            raise ValueError(
                f"observation shape {z.shape} inconsistent with measurement_dim {self.measurement_dim}"
            )
        check_finite("observation", z)

        P = ensure_positive_definite(self.covariance)
        sigma_points = self._generate_sigma_points(self.state, P)

        sigma_points_meas = np.array([
            self.model.observe(sp) for sp in sigma_points
        ])

        z_pred, Pzz = self._unscented_transform(sigma_points_meas)
        S = Pzz + self.R

        diff_x = sigma_points - self.state
        diff_z = sigma_points_meas - z_pred
        Pxz = (self.Wc[:, np.newaxis] * diff_x).T @ diff_z

        S_inv = invert_covariance(S, "innovation covariance", self.max_condition)
        K = Pxz @ S_inv

        innovation = z - z_pred
        state_new = self.state + K @ innovation
        covariance_new = symmetrize(P - K @ S @ K.T)

        check_finite("corrected belief", state_new, covariance_new)

        self.state = state_new
        self.covariance = covariance_new
        self.innovation = innovation
        self.innovation_covariance = S

