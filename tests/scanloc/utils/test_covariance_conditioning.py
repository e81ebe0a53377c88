"""Unit tests for covariance conditioning and checked inversion."""

import unittest

import numpy as np

from scanloc.utils.linalg import (
    DegenerateCovarianceError,
    EIGENVALUE_FLOOR,
    check_finite,
    ensure_positive_definite,
    invert_covariance,
    symmetrize,
)


class TestSymmetrize(unittest.TestCase):

    def test_symmetric_result(self) -> None:
        P = np.array([[1.0, 0.2], [0.0, 1.0]])
        S = symmetrize(P)
        np.testing.assert_allclose(S, S.T)
        np.testing.assert_allclose(S[0, 1], 0.1)


class TestEnsurePositiveDefinite(unittest.TestCase):

    def test_positive_definite_unchanged(self) -> None:
        P = np.diag([1.0, 2.0, 3.0])
        np.testing.assert_allclose(ensure_positive_definite(P), P)

    def test_negative_eigenvalue_is_floored(self) -> None:
        P = np.array([[1.0, 0.0], [0.0, -1e-6]])
        P_fixed = ensure_positive_definite(P)
        eigenvalues = np.linalg.eigvalsh(P_fixed)
        self.assertGreaterEqual(eigenvalues.min(), EIGENVALUE_FLOOR * (1 - 1e-6))
        np.linalg.cholesky(P_fixed)

    def test_non_finite_raises(self) -> None:
        with self.assertRaises(DegenerateCovarianceError):
            ensure_positive_definite(np.array([[np.nan, 0.0], [0.0, 1.0]]))


class TestInvertCovariance(unittest.TestCase):

    def test_exact_inverse(self) -> None:
        P = np.array([[2.0, 0.5], [0.5, 1.0]])
        np.testing.assert_allclose(invert_covariance(P) @ P, np.eye(2), atol=1e-12)

    def test_singular_raises(self) -> None:
        with self.assertRaises(DegenerateCovarianceError):
            invert_covariance(np.array([[1.0, 1.0], [1.0, 1.0]]))

    def test_ill_conditioned_raises(self) -> None:
        with self.assertRaises(DegenerateCovarianceError):
            invert_covariance(np.diag([1.0, 1e-14]))

    def test_custom_condition_limit(self) -> None:
        P = np.diag([1.0, 1e-3])
        invert_covariance(P)
        with self.assertRaises(DegenerateCovarianceError):
            invert_covariance(P, max_condition=100.0)

    def test_non_finite_raises(self) -> None:
        with self.assertRaises(DegenerateCovarianceError):
            invert_covariance(np.array([[np.inf, 0.0], [0.0, 1.0]]))

    def test_non_square_raises_value_error(self) -> None:
        with self.assertRaises(ValueError):
            invert_covariance(np.ones((2, 3)))

    def test_error_is_linalg_error(self) -> None:
        self.assertTrue(issubclass(DegenerateCovarianceError, np.linalg.LinAlgError))


class TestCheckFinite(unittest.TestCase):

    def test_passes_on_finite(self) -> None:
        check_finite("x", np.zeros(3), np.eye(2))

    def test_message_contains_name(self) -> None:
        with self.assertRaisesRegex(DegenerateCovarianceError, "predicted belief"):
            check_finite("predicted belief", np.array([1.0, np.nan]))


if __name__ == "__main__":
    unittest.main()
