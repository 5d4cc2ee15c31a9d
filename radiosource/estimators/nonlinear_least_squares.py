"""
Gauss-Newton and Levenberg-Marquardt refinement of radio source parameters.

The refinement stage minimizes the weighted residuals between measured
and modelled distances or RSSI values:

    x̂ = argmin ½ r(x)' W r(x),    r(x) = y - h(x),    W = diag(1/σᵢ²)

where x stacks whichever of position, transmitted power and path-loss
exponent are being estimated.

Each iteration solves (J'WJ + μI) Δx = J'W r. Gauss-Newton keeps μ = 0.
Levenberg-Marquardt adapts μ from the ratio between the actual and the
predicted cost decrease (Nielsen's update rule).

The covariance of the estimate is (J'WJ)⁻¹ evaluated at x̂. A normal
matrix that is not positive definite does not fail the refinement: the
point estimate is returned and the covariance is reported as
UNAVAILABLE.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np
from scipy import linalg

from radiosource.types import CovarianceStatus

logger = logging.getLogger(__name__)

_MAX_DAMPING = 1e10
_MIN_PREDICTED_DECREASE = 1e-15

Model = Callable[[np.ndarray], np.ndarray]


@dataclass
class NonlinearLSResult:
    """Outcome of a nonlinear least squares refinement.

    Attributes:
        x: Refined parameter vector.
        covariance: Parameter covariance (n × n), or None.
        iterations: Number of linearizations performed.
        residuals: Residuals y - h(x̂) at the solution.
        cost: ½ r'Wr at the solution.
        converged: Whether the last step fell below the tolerance.
        chi_sq: r'Wr at the solution.
        covariance_status: AVAILABLE, NOT_REQUESTED, or UNAVAILABLE when
            J'WJ is not positive definite.
    """

    x: np.ndarray
    covariance: Optional[np.ndarray]
    iterations: int
    residuals: np.ndarray
    cost: float
    converged: bool
    chi_sq: float = 0.0
    covariance_status: CovarianceStatus = CovarianceStatus.NOT_REQUESTED


def gauss_newton(
    h: Model,
    jacobian: Model,
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    max_iter: int = 20,
    tol: float = 1e-8,
    return_covariance: bool = True,
    scale_covariance: bool = False,
) -> NonlinearLSResult:
    """
    Undamped Gauss-Newton refinement.

    Converges quadratically from a good initial guess, such as a linear
    lateration result, but can diverge from a poor one.

    Args:
        h: Measurement model, R^n → R^m.
        jacobian: Jacobian of ``h`` (m × n).
        y: Measurements (m,).
        x0: Initial parameters (n,).
        weights: Per-measurement weights (m,), normally 1/σᵢ². Unit weights
            when None.
        max_iter: Maximum number of linearizations.
        tol: Relative tolerance on ‖Δx‖.
        return_covariance: Compute (J'WJ)⁻¹ at the solution.
        scale_covariance: Scale the covariance by r'Wr / (m - n).

    Returns:
        NonlinearLSResult.

    Example:
        >>> sensors = np.array([[0, 0], [10, 0], [0, 10], [10, 10]], dtype=float)
        >>> def h(x):
        ...     return np.linalg.norm(sensors - x, axis=1)
        >>> def jac(x):
        ...     diff = x - sensors
        ...     return diff / np.linalg.norm(diff, axis=1, keepdims=True)
        >>> result = gauss_newton(h, jac, h(np.array([3.0, 4.0])), np.array([5.0, 5.0]))
    """
    return _refine(
        h, jacobian, y, x0, weights, None, max_iter, tol, return_covariance, scale_covariance
    )


def levenberg_marquardt(
    h: Model,
    jacobian: Model,
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    max_iter: int = 100,
    tol: float = 1e-10,
    mu0: float = 1e-3,
    return_covariance: bool = True,
    scale_covariance: bool = False,
) -> NonlinearLSResult:
    """
    Damped refinement used by lateration and RSSI model fitting.

    Large μ moves along the gradient, which is safe far from the solution.
    Small μ approaches Gauss-Newton near it. A step is only taken when it
    lowers the cost. Once μ exceeds its bound the refinement stops where
    it is.

    Args:
        h: Measurement model, R^n → R^m.
        jacobian: Jacobian of ``h`` (m × n).
        y: Measurements (m,).
        x0: Initial parameters (n,).
        weights: Per-measurement weights (m,), normally 1/σᵢ².
        max_iter: Maximum number of linearizations.
        tol: Relative tolerance on ‖Δx‖.
        mu0: Initial damping.
        return_covariance: Compute (J'WJ)⁻¹ at the solution.
        scale_covariance: Scale the covariance by r'Wr / (m - n).

    Returns:
        NonlinearLSResult.
    """
    return _refine(
        h, jacobian, y, x0, weights, mu0, max_iter, tol, return_covariance, scale_covariance
    )


def normal_matrix_covariance(
    JtWJ: np.ndarray, sigma2: float = 1.0
) -> Tuple[Optional[np.ndarray], CovarianceStatus]:
    """
    Covariance σ² (J'WJ)⁻¹ from a normal matrix.

    Returns:
        (covariance, AVAILABLE), or (None, UNAVAILABLE) when the matrix is
        numerically rank deficient, not positive definite, or its inverse
        is not finite.
    """
    n = JtWJ.shape[0]
    # Cholesky alone can succeed on a rank deficient matrix through round-off
    if np.linalg.matrix_rank(JtWJ) < n:
        return None, CovarianceStatus.UNAVAILABLE
    try:
        factor = linalg.cho_factor(JtWJ)
    except linalg.LinAlgError:
        return None, CovarianceStatus.UNAVAILABLE

    P = sigma2 * linalg.cho_solve(factor, np.eye(n))
    if not np.all(np.isfinite(P)):
        return None, CovarianceStatus.UNAVAILABLE
    return 0.5 * (P + P.T), CovarianceStatus.AVAILABLE


def _validated(
    y: np.ndarray, x0: np.ndarray, weights: Optional[np.ndarray]
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    y = np.asarray(y, dtype=float)
    x0 = np.array(x0, dtype=float)
    if y.ndim != 1:
        raise ValueError(f"y must be 1D, got shape {y.shape}")
    if x0.ndim != 1:
        raise ValueError(f"x0 must be 1D, got shape {x0.shape}")

    if weights is None:
        return y, x0, np.ones(len(y))

    w = np.asarray(weights, dtype=float)
    if w.shape != y.shape:
        raise ValueError(f"weights must have shape {y.shape}, got {w.shape}")
    if np.any(w < 0):
        raise ValueError("weights must be non-negative")
    return y, x0, w


def _linearize(
    h: Model, jacobian: Model, x: np.ndarray, y: np.ndarray, w: np.ndarray
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Residuals, normal matrix J'WJ and gradient J'Wr at x."""
    hx = np.asarray(h(x), dtype=float)
    if hx.shape != y.shape:
        raise ValueError(f"h(x) returned shape {hx.shape}, expected {y.shape}")
    J = np.asarray(jacobian(x), dtype=float)
    if J.shape != (len(y), len(x)):
        raise ValueError(f"Jacobian shape {J.shape}, expected ({len(y)}, {len(x)})")

    r = y - hx
    JtW = J.T * w
    return r, JtW @ J, JtW @ r


def _damped_step(N: np.ndarray, g: np.ndarray, mu: float) -> np.ndarray:
    A = N + mu * np.eye(len(g))
    try:
        return linalg.solve(A, g, assume_a="sym")
    except linalg.LinAlgError:
        return linalg.lstsq(A, g)[0]


def _lm_trial(
    h: Model,
    x: np.ndarray,
    y: np.ndarray,
    w: np.ndarray,
    N: np.ndarray,
    g: np.ndarray,
    cost: float,
    mu: float,
    nu: float,
) -> Tuple[np.ndarray, float, float]:
    """First damped step that lowers the cost, with the updated (mu, nu)."""
    while mu <= _MAX_DAMPING:
        step = _damped_step(N, g, mu)
        r_new = y - h(x + step)
        actual = cost - 0.5 * float(w @ r_new**2)
        predicted = 0.5 * float(step @ (mu * step + g))
        gain = actual / predicted if predicted > _MIN_PREDICTED_DECREASE else 0.0

        if gain > 0:
            return step, mu * max(1.0 / 3.0, 1.0 - (2.0 * gain - 1.0) ** 3), 2.0
        mu *= nu
        nu *= 2.0

    logger.debug("damping exceeded %.0e, stopping refinement", _MAX_DAMPING)
    return np.zeros_like(x), mu, nu


def _refine(
    h: Model,
    jacobian: Model,
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray],
    mu: Optional[float],
    max_iter: int,
    tol: float,
    return_covariance: bool,
    scale_covariance: bool,
) -> NonlinearLSResult:
    y, x, w = _validated(y, x0, weights)
    m, n = len(y), len(x)
    nu = 2.0

    converged = False
    iterations = 0
    while iterations < max_iter and not converged:
        iterations += 1
        r, N, g = _linearize(h, jacobian, x, y, w)

        if mu is None:
            step = _damped_step(N, g, 0.0)
        else:
            step, mu, nu = _lm_trial(h, x, y, w, N, g, 0.5 * float(w @ r**2), mu, nu)

        x = x + step
        if not np.all(np.isfinite(x)):
            raise ValueError("nonlinear least squares diverged to non-finite values")
        converged = np.linalg.norm(step) < tol * (np.linalg.norm(x) + tol)

    r, N, _ = _linearize(h, jacobian, x, y, w)
    chi_sq = float(w @ r**2)

    P = None
    status = CovarianceStatus.NOT_REQUESTED
    if return_covariance:
        sigma2 = chi_sq / (m - n) if scale_covariance and m > n else 1.0
        P, status = normal_matrix_covariance(N, sigma2)
        if P is None:
            logger.debug("normal matrix is not positive definite, covariance unavailable")

    return NonlinearLSResult(
        x=x,
        covariance=P,
        iterations=iterations,
        residuals=r,
        cost=0.5 * chi_sq,
        converged=bool(converged),
        chi_sq=chi_sq,
        covariance_status=status,
    )
