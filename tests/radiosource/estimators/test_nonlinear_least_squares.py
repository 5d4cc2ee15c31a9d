"""
Unit tests for nonlinear least squares solvers.

Tests cover:
    - Gauss-Newton and Levenberg-Marquardt on 2D range positioning
    - Weighted nonlinear LS
    - Covariance availability on singular normal matrices
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from radiosource.estimators.nonlinear_least_squares import (
    NonlinearLSResult,
    gauss_newton,
    levenberg_marquardt,
    normal_matrix_covariance,
)
from radiosource.types import CovarianceStatus


class TestRangePositioning2D(unittest.TestCase):
    """Test solvers on hᵢ(x) = ‖x - aᵢ‖ (range from position x to anchor aᵢ)."""

    def setUp(self):
        self.anchors = np.array([[0, 0], [10, 0], [0, 10], [10, 10]], dtype=float)
        self.true_pos = np.array([3.0, 4.0])

        def h(x):
            return np.linalg.norm(self.anchors - x, axis=1)

        def jacobian(x):
            diff = x - self.anchors
            ranges = np.linalg.norm(diff, axis=1, keepdims=True)
            return diff / np.maximum(ranges, 1e-10)

        self.h = h
        self.jacobian = jacobian
        self.y_clean = h(self.true_pos)

    def test_gauss_newton_exact_measurements(self):
        result = gauss_newton(self.h, self.jacobian, self.y_clean, np.array([5.0, 5.0]))

        assert_allclose(result.x, self.true_pos, atol=1e-6)
        self.assertTrue(result.converged)
        self.assertIsInstance(result, NonlinearLSResult)

    def test_levenberg_marquardt_poor_initial_guess(self):
        result = levenberg_marquardt(
            self.h, self.jacobian, self.y_clean, np.array([12.0, -3.0])
        )

        assert_allclose(result.x, self.true_pos, atol=1e-6)
        self.assertLess(result.chi_sq, 1e-12)

    def test_covariance_is_inverse_weighted_normal_matrix(self):
        sigmas = np.array([0.1, 0.2, 0.1, 0.3])
        weights = 1.0 / sigmas**2

        result = levenberg_marquardt(
            self.h, self.jacobian, self.y_clean, np.array([5.0, 5.0]), weights=weights
        )

        J = self.jacobian(result.x)
        expected = np.linalg.inv(J.T @ np.diag(weights) @ J)
        self.assertEqual(result.covariance_status, CovarianceStatus.AVAILABLE)
        assert_allclose(result.covariance, expected, rtol=1e-8)
        assert_allclose(result.covariance, result.covariance.T)

    def test_scaled_covariance_vanishes_for_exact_data(self):
        result = levenberg_marquardt(
            self.h, self.jacobian, self.y_clean, np.array([5.0, 5.0]),
            scale_covariance=True,
        )

        assert_allclose(result.covariance, np.zeros((2, 2)), atol=1e-10)

    def test_no_covariance_when_not_requested(self):
        result = levenberg_marquardt(
            self.h, self.jacobian, self.y_clean, np.array([5.0, 5.0]),
            return_covariance=False,
        )

        self.assertIsNone(result.covariance)
        self.assertEqual(result.covariance_status, CovarianceStatus.NOT_REQUESTED)

    def test_weights_favour_accurate_measurements(self):
        y = self.y_clean.copy()
        y[3] += 1.0

        weights = np.array([1e4, 1e4, 1e4, 1e-4])
        result = levenberg_marquardt(self.h, self.jacobian, y, np.array([5.0, 5.0]), weights=weights)

        assert_allclose(result.x, self.true_pos, atol=1e-3)

    def test_invalid_inputs_raise(self):
        with self.assertRaises(ValueError):
            levenberg_marquardt(self.h, self.jacobian, self.y_clean, np.zeros((2, 1)))
        with self.assertRaises(ValueError):
            levenberg_marquardt(
                self.h, self.jacobian, self.y_clean, np.zeros(2), weights=np.ones(3)
            )
        with self.assertRaises(ValueError):
            levenberg_marquardt(
                self.h, self.jacobian, self.y_clean, np.zeros(2), weights=-np.ones(4)
            )


class TestNormalMatrixCovariance(unittest.TestCase):

    def test_positive_definite(self):
        JtWJ = np.array([[4.0, 1.0], [1.0, 3.0]])

        P, status = normal_matrix_covariance(JtWJ)

        self.assertEqual(status, CovarianceStatus.AVAILABLE)
        assert_allclose(P, np.linalg.inv(JtWJ))

    def test_singular_matrix_is_unavailable(self):
        JtWJ = np.array([[1.0, 2.0], [2.0, 4.0]])

        P, status = normal_matrix_covariance(JtWJ)

        self.assertIsNone(P)
        self.assertEqual(status, CovarianceStatus.UNAVAILABLE)

    def test_collinear_columns_are_unavailable(self):
        # Power and exponent columns of equidistant sensors are proportional
        J = np.column_stack([np.ones(6), np.full(6, -13.7)])

        P, status = normal_matrix_covariance(J.T @ J)

        self.assertIsNone(P)
        self.assertEqual(status, CovarianceStatus.UNAVAILABLE)


if __name__ == "__main__":
    unittest.main()
