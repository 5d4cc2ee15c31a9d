"""
Lateration solvers for radio source positioning.

This module locates a radio source from distances measured at known
sensor positions, and estimates transmitted power and path-loss exponent
once the source position is known:

- Homogeneous linear lateration (SVD null space)
- Inhomogeneous linear lateration (reference-differenced least squares)
- Nonlinear lateration (Levenberg-Marquardt refinement)
- Closed-form power / path-loss exponent fit

The linear solvers are the preliminary solvers used on every sampled
subset by the robust estimators. They raise SolverError on degenerate
geometry (coincident or collinear sensors) so that the robust sampling
engine can discard the subset and keep sampling.
"""

from typing import Optional, Tuple

import numpy as np
from scipy import linalg

from radiosource.errors import SolverError
from radiosource.estimators.least_squares import (
    linear_least_squares,
    weighted_least_squares,
)
from radiosource.estimators.nonlinear_least_squares import (
    NonlinearLSResult,
    levenberg_marquardt,
)
from radiosource.rf.measurement_models import _wavelength_term_db, squared_distances

# Relative singular value below which a lateration system is rank deficient
_RANK_TOLERANCE = 1e-10


def _check_lateration_input(
    positions: np.ndarray, distances: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    positions = np.asarray(positions, dtype=float)
    distances = np.asarray(distances, dtype=float)

    if positions.ndim != 2 or positions.shape[1] not in (2, 3):
        raise ValueError(
            f"positions must have shape (N, 2) or (N, 3), got {positions.shape}"
        )
    if distances.shape != (positions.shape[0],):
        raise ValueError(
            f"Expected {positions.shape[0]} distances, got shape {distances.shape}"
        )
    dim = positions.shape[1]
    if positions.shape[0] < dim + 1:
        raise ValueError(
            f"Lateration in {dim}D requires at least {dim + 1} readings, "
            f"got {positions.shape[0]}"
        )
    return positions, distances


def homogeneous_lateration(positions: np.ndarray, distances: np.ndarray) -> np.ndarray:
    """
    Homogeneous linear lateration.

    Each range equation ‖x - pᵢ‖² = dᵢ² is expanded as
        -2 pᵢ·x + ‖x‖² + (‖pᵢ‖² - dᵢ²) = 0
    and written as a homogeneous system A h = 0 with
        row i = [-2 pᵢ, 1, ‖pᵢ‖² - dᵢ²],  h = w · [x, ‖x‖², 1].
    The solution is the right singular vector of A with the smallest
    singular value, and x = h[:d] / h[-1].

    Args:
        positions: Sensor positions, shape (N, d) with d=2 or 3, N ≥ d+1.
        distances: Measured distances, shape (N,).

    Returns:
        Estimated source position, shape (d,).

    Raises:
        ValueError: If input shapes are invalid.
        SolverError: If the geometry is degenerate (e.g. collinear sensors).

    Example:
        >>> sensors = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0]])
        >>> source = np.array([3.0, 4.0])
        >>> d = np.linalg.norm(sensors - source, axis=1)
        >>> np.allclose(homogeneous_lateration(sensors, d), source)
        True
    """
    positions, distances = _check_lateration_input(positions, distances)
    n, dim = positions.shape

    A = np.zeros((n, dim + 2))
    A[:, :dim] = -2.0 * positions
    A[:, dim] = 1.0
    A[:, dim + 1] = np.sum(positions**2, axis=1) - distances**2

    # Normalize rows to improve conditioning
    A /= np.linalg.norm(A, axis=1, keepdims=True)

    try:
        _, s, vt = linalg.svd(A)
    except linalg.LinAlgError as e:
        raise SolverError(f"SVD failed: {e}") from e

    # A has dim+2 unknowns and one scale ambiguity: rank must be dim+1
    if s[dim] <= _RANK_TOLERANCE * s[0]:
        raise SolverError("degenerate sensor geometry, lateration system is rank deficient")

    h = vt[-1]
    if abs(h[-1]) <= _RANK_TOLERANCE * np.linalg.norm(h):
        raise SolverError("homogeneous solution lies at infinity")

    return h[:dim] / h[-1]


def inhomogeneous_lateration(
    positions: np.ndarray, distances: np.ndarray, ref_idx: int = 0
) -> np.ndarray:
    """
    Inhomogeneous linear lateration by reference differencing.

    Subtracting the range equation of a reference sensor removes the
    quadratic term ‖x‖², leaving for every other sensor i:
        -2 (pᵢ - p_ref)·x = dᵢ² - d_ref² - (‖pᵢ‖² - ‖p_ref‖²)
    which is solved with linear least squares.

    Args:
        positions: Sensor positions, shape (N, d) with d=2 or 3, N ≥ d+1.
        distances: Measured distances, shape (N,).
        ref_idx: Index of the reference sensor (default 0).

    Returns:
        Estimated source position, shape (d,).

    Raises:
        ValueError: If input shapes or ref_idx are invalid.
        SolverError: If the differenced system is rank deficient.

    Example:
        >>> sensors = np.array([[0.0, 0.0], [10.0, 0.0], [10.0, 10.0], [0.0, 10.0]])
        >>> d = np.linalg.norm(sensors - np.array([5.0, 5.0]), axis=1)
        >>> np.allclose(inhomogeneous_lateration(sensors, d), [5.0, 5.0])
        True
    """
    positions, distances = _check_lateration_input(positions, distances)
    n, dim = positions.shape

    if ref_idx < 0 or ref_idx >= n:
        raise ValueError(f"ref_idx must be in [0, {n - 1}], got {ref_idx}")

    p_ref = positions[ref_idx]
    d_ref = distances[ref_idx]
    others = np.arange(n) != ref_idx

    H = -2.0 * (positions[others] - p_ref)
    y = (
        distances[others] ** 2
        - d_ref**2
        - (np.sum(positions[others] ** 2, axis=1) - np.sum(p_ref**2))
    )

    position, _ = linear_least_squares(H, y, return_covariance=False)
    return position


def nonlinear_lateration(
    positions: np.ndarray,
    distances: np.ndarray,
    initial_position: np.ndarray,
    distance_stds: Optional[np.ndarray] = None,
    return_covariance: bool = True,
    max_iter: int = 100,
) -> NonlinearLSResult:
    """
    Nonlinear lateration refined with Levenberg-Marquardt.

    Minimizes Σ wᵢ (dᵢ - ‖x - pᵢ‖)² with wᵢ = 1/σᵢ². The covariance of the
    estimate is (J'WJ)⁻¹ where J has rows (x - pᵢ)ᵀ/‖x - pᵢ‖.

    Args:
        positions: Sensor positions, shape (N, d).
        distances: Measured distances, shape (N,).
        initial_position: Starting point, shape (d,).
        distance_stds: Optional standard deviations σᵢ, shape (N,).
        return_covariance: If True, compute the covariance of the estimate.
        max_iter: Maximum number of LM iterations.

    Returns:
        NonlinearLSResult with the refined position in ``x``.

    Raises:
        ValueError: If input shapes are invalid.
    """
    positions, distances = _check_lateration_input(positions, distances)
    initial_position = np.asarray(initial_position, dtype=float)
    if initial_position.shape != (positions.shape[1],):
        raise ValueError(
            f"initial_position must have shape ({positions.shape[1]},), "
            f"got {initial_position.shape}"
        )

    weights = None
    if distance_stds is not None:
        distance_stds = np.asarray(distance_stds, dtype=float)
        if np.any(distance_stds <= 0):
            raise ValueError("distance standard deviations must be positive")
        weights = 1.0 / distance_stds**2

    def h(x):
        return np.linalg.norm(positions - x, axis=1)

    def jacobian(x):
        diff = x - positions
        ranges = np.linalg.norm(diff, axis=1, keepdims=True)
        return diff / np.maximum(ranges, 1e-12)

    return levenberg_marquardt(
        h,
        jacobian,
        distances,
        initial_position,
        weights=weights,
        max_iter=max_iter,
        return_covariance=return_covariance,
    )


def linear_power_pathloss(
    positions: np.ndarray,
    rssi: np.ndarray,
    source_position: np.ndarray,
    frequency,
    transmitted_power_dbm: Optional[float] = None,
    path_loss_exponent: Optional[float] = None,
    rssi_stds: Optional[np.ndarray] = None,
) -> Tuple[float, float, Optional[np.ndarray]]:
    """
    Closed-form transmitted power and path-loss exponent fit.

    With the source position fixed, the path-loss model is linear in the
    transmitted power Pt and the path-loss exponent n:
        Prᵢ = Pt + n · (10·log10(c/(4πf)) - 5·log10(dᵢ²))
    Parameters passed in as known values are moved to the right-hand side
    and only the remaining ones are estimated by weighted least squares.

    Args:
        positions: Sensor positions, shape (N, d).
        rssi: Received power in dBm, shape (N,).
        source_position: Known source position, shape (d,).
        frequency: Carrier frequency in Hz, scalar or shape (N,).
        transmitted_power_dbm: Known transmitted power; estimated if None.
        path_loss_exponent: Known path-loss exponent; estimated if None.
        rssi_stds: Optional RSSI standard deviations, shape (N,).

    Returns:
        Tuple of (transmitted_power_dbm, path_loss_exponent, covariance),
        where covariance covers the estimated parameters in the order
        (power, exponent), or is None if nothing was estimated.

    Raises:
        ValueError: If both parameters are given or inputs are invalid.
        SolverError: If the system is singular (e.g. all sensors at the
                     same distance while estimating the exponent).
    """
    rssi = np.asarray(rssi, dtype=float)
    positions = np.atleast_2d(np.asarray(positions, dtype=float))
    if rssi.shape != (positions.shape[0],):
        raise ValueError(f"Expected {positions.shape[0]} rssi values, got shape {rssi.shape}")
    if transmitted_power_dbm is not None and path_loss_exponent is not None:
        raise ValueError("nothing to estimate: both power and path-loss exponent are known")

    d2 = np.maximum(squared_distances(positions, source_position), 1e-12)
    slope = np.broadcast_to(_wavelength_term_db(frequency) - 5.0 * np.log10(d2), rssi.shape)

    columns = []
    b = rssi.copy()
    if transmitted_power_dbm is None:
        columns.append(np.ones_like(rssi))
    else:
        b = b - transmitted_power_dbm
    if path_loss_exponent is None:
        columns.append(slope)
    else:
        b = b - path_loss_exponent * slope

    A = np.column_stack(columns)
    if rssi_stds is None:
        rssi_stds = np.ones_like(rssi)
    x_hat, P = weighted_least_squares(A, b, rssi_stds, is_sigma=True)

    k = 0
    if transmitted_power_dbm is None:
        transmitted_power_dbm = float(x_hat[k])
        k += 1
    if path_loss_exponent is None:
        path_loss_exponent = float(x_hat[k])

    return transmitted_power_dbm, path_loss_exponent, P
