"""
Least squares solvers used by the radio source estimators.

Available solvers:
    - Linear Least Squares (LS, WLS)
    - Nonlinear Least Squares (Gauss-Newton, Levenberg-Marquardt)
"""

from radiosource.estimators.least_squares import (
    linear_least_squares,
    weighted_least_squares,
)
from radiosource.estimators.nonlinear_least_squares import (
    NonlinearLSResult,
    gauss_newton,
    levenberg_marquardt,
    normal_matrix_covariance,
)

__all__ = [
    # Linear LS
    "linear_least_squares",
    "weighted_least_squares",
    # Nonlinear LS
    "gauss_newton",
    "levenberg_marquardt",
    "normal_matrix_covariance",
    "NonlinearLSResult",
]
