"""
Base classes for recursive state estimators.

This module defines the abstract interface shared by the filters in this
package: a belief (mean vector and covariance matrix) that is advanced by
predict() and refined by correct().
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple

import numpy as np


class StateEstimator(ABC):
    """Abstract base class for recursive state estimators."""

    def __init__(self, state_dim: int):
        """
        Initialize state estimator.

        Args:
            state_dim: Dimension of the state vector.
        """
        self.state_dim = state_dim
        self.state: Optional[np.ndarray] = None
        self.covariance: Optional[np.ndarray] = None

    @abstractmethod
    def predict(self, u: Optional[np.ndarray] = None, dt: float = 1.0) -> None:
        """
        Perform prediction step (time update).

        Args:
            u: Optional control input vector.
            dt: Elapsed time since the previous prediction (seconds).
        """
        pass

    @abstractmethod
    def correct(self, z: np.ndarray) -> None:
        """
        Perform measurement update (correction step).

        Args:
            z: Observation vector.
        """
        pass

    def get_state(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Get current state estimate and covariance.

        Returns:
            Tuple of (state_vector, covariance_matrix), both copies.
        """
        if self.state is None or self.covariance is None:
            raise RuntimeError("Estimator not initialized.")
        return self.state.copy(), self.covariance.copy()
