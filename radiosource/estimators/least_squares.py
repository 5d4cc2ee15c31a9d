"""
Linear least squares for linearized lateration and path-loss equations.

Closed-form lateration stacks one row per reading, and the linear
power/path-loss fit does the same with one RSSI per row. Both end up in
the normal equations N x = A'W b, solved here with a Cholesky
factorization.

Functions:
    - linear_least_squares: ordinary LS with a residual-scaled covariance
    - weighted_least_squares: LS with per-row weights, sigmas or a full W

A system without a unique solution raises SolverError, which the robust
sampling engine treats as a degenerate subset of readings.
"""

from typing import Optional, Tuple

import numpy as np
from scipy import linalg

from radiosource.errors import SolverError


def _as_system(A: np.ndarray, b: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float)
    if A.ndim != 2 or b.ndim != 1:
        raise ValueError(f"A must be 2D and b must be 1D. Got A: {A.shape}, b: {b.shape}")
    if A.shape[0] != b.shape[0]:
        raise ValueError(f"A has {A.shape[0]} rows but b has {b.shape[0]} entries")
    if A.shape[0] < A.shape[1]:
        raise SolverError(
            f"{A.shape[0]} equations cannot determine {A.shape[1]} unknowns"
        )
    return A, b


def _weight_matrix(W_or_sigma: np.ndarray, m: int, is_sigma: bool) -> np.ndarray:
    W_or_sigma = np.asarray(W_or_sigma, dtype=float)

    if W_or_sigma.ndim == 2:
        if W_or_sigma.shape != (m, m):
            raise ValueError(f"Weight matrix must be ({m}, {m}), got {W_or_sigma.shape}")
        if not np.allclose(W_or_sigma, W_or_sigma.T):
            raise ValueError("Weight matrix W must be symmetric")
        return W_or_sigma

    if W_or_sigma.ndim != 1:
        raise ValueError(f"W_or_sigma must be 1D or 2D, got {W_or_sigma.ndim}D")
    if W_or_sigma.shape[0] != m:
        raise ValueError(f"Expected {m} weights, got {W_or_sigma.shape[0]}")

    if is_sigma:
        if np.any(W_or_sigma <= 0):
            raise ValueError("Sigma values must be positive")
        return np.diag(1.0 / W_or_sigma**2)

    if np.any(W_or_sigma < 0):
        raise ValueError("Weights must be non-negative")
    return np.diag(W_or_sigma)


def _solve_normal_equations(
    N: np.ndarray, rhs: np.ndarray, return_inverse: bool
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    n = N.shape[0]
    rank = np.linalg.matrix_rank(N)
    if rank < n:
        raise SolverError(f"Normal matrix is rank deficient: rank={rank} < n={n}")

    try:
        factor = linalg.cho_factor(N)
    except linalg.LinAlgError as e:
        raise SolverError(f"Normal matrix is not positive definite: {e}") from e

    x_hat = linalg.cho_solve(factor, rhs)
    N_inv = linalg.cho_solve(factor, np.eye(n)) if return_inverse else None
    return x_hat, N_inv


def linear_least_squares(
    A: np.ndarray, b: np.ndarray, return_covariance: bool = True
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Ordinary least squares, x_hat = argmin ||Ax - b||².

    The covariance is scaled by the residual variance σ² = ||b - A x_hat||² / (m - n).
    A square system has no redundancy to estimate σ² from, so σ² = 1 is used.

    Args:
        A: Design matrix (m × n), m ≥ n.
        b: Observation vector (m,).
        return_covariance: Also return P = σ² (A'A)^-1.

    Returns:
        Tuple (x_hat, P), with P None when not requested.

    Raises:
        ValueError: If A and b have inconsistent shapes.
        SolverError: If A has fewer rows than columns or is rank deficient.

    Example:
        >>> A = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
        >>> b = np.array([1.0, 2.0, 3.0])
        >>> x_hat, _ = linear_least_squares(A, b)
        >>> np.allclose(x_hat, [1.0, 2.0])
        True
    """
    A, b = _as_system(A, b)
    m, n = A.shape

    x_hat, N_inv = _solve_normal_equations(A.T @ A, A.T @ b, return_covariance)
    if N_inv is None:
        return x_hat, None

    sigma2 = 1.0
    if m > n:
        residuals = b - A @ x_hat
        sigma2 = float(residuals @ residuals) / (m - n)
    return x_hat, sigma2 * N_inv


def weighted_least_squares(
    A: np.ndarray,
    b: np.ndarray,
    W_or_sigma: np.ndarray,
    is_sigma: bool = False,
    return_covariance: bool = True,
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Weighted least squares, x_hat = argmin (Ax - b)' W (Ax - b).

    With wᵢ = 1/σᵢ² the weights are absolute, so the covariance is (A'WA)^-1
    without any residual scaling. Zero weights drop rows, which may leave
    the system rank deficient.

    Args:
        A: Design matrix (m × n), m ≥ n.
        b: Observation vector (m,).
        W_or_sigma: A full (m × m) weight matrix, or an (m,) vector of
            diagonal weights, or of standard deviations when ``is_sigma``.
        is_sigma: Interpret a 1D ``W_or_sigma`` as σᵢ.
        return_covariance: Also return P = (A'WA)^-1.

    Returns:
        Tuple (x_hat, P), with P None when not requested.

    Raises:
        ValueError: If shapes are inconsistent, W is not symmetric, weights
            are negative or sigmas are not positive.
        SolverError: If A'WA is rank deficient.
    """
    A, b = _as_system(A, b)
    W = _weight_matrix(W_or_sigma, A.shape[0], is_sigma)

    AtW = A.T @ W
    return _solve_normal_equations(AtW @ A, AtW @ b, return_covariance)
