"""
Nonlinear fitting of the RSSI path-loss model.

Fits any combination of source position, transmitted power and path-loss
exponent to RSSI readings with Levenberg-Marquardt. Parameters that are
not estimated stay fixed at their initial value.

Parameter vector layout (disabled parameters are skipped):
    [x₁ … x_d, Pt, n]
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from radiosource.estimators.nonlinear_least_squares import levenberg_marquardt
from radiosource.rf.measurement_models import expected_rssi, rssi_jacobian
from radiosource.types import CovarianceStatus


@dataclass
class RssiFitResult:
    """Result of an RSSI model fit.

    Attributes:
        position: Source position (estimated or fixed), shape (d,).
        transmitted_power_dbm: Transmitted power in dBm (estimated or fixed).
        path_loss_exponent: Path-loss exponent (estimated or fixed).
        covariance: Covariance of the estimated parameters, or None.
        covariance_status: Outcome of the covariance computation.
        chi_sq: Weighted sum of squared RSSI residuals.
        converged: Whether Levenberg-Marquardt converged.
    """

    position: np.ndarray
    transmitted_power_dbm: float
    path_loss_exponent: float
    covariance: Optional[np.ndarray]
    covariance_status: CovarianceStatus
    chi_sq: float
    converged: bool


def propagate_position_covariances(
    gradients: np.ndarray, covariances: Sequence[Optional[np.ndarray]]
) -> np.ndarray:
    """
    Variance added to each measurement by the uncertainty of its sensor position.

    σᵢ² = gᵢ Σᵢ gᵢᵀ, where gᵢ is the gradient of the measurement with
    respect to the sensor position.

    Args:
        gradients: Gradients, shape (m, d).
        covariances: Sensor position covariances, (d, d) each or None.

    Returns:
        Additional variances, shape (m,). Zero where no covariance is known.
    """
    variances = np.zeros(len(gradients))
    for i, (g, cov) in enumerate(zip(gradients, covariances)):
        if cov is not None:
            variances[i] = max(float(g @ cov @ g), 0.0)
    return variances


def fit_rssi_model(
    positions: np.ndarray,
    rssi: np.ndarray,
    frequency,
    initial_position: np.ndarray,
    initial_transmitted_power_dbm: float,
    initial_path_loss_exponent: float = 2.0,
    estimate_position: bool = True,
    estimate_transmitted_power: bool = True,
    estimate_path_loss: bool = False,
    rssi_stds: Optional[np.ndarray] = None,
    position_covariances: Optional[Sequence[Optional[np.ndarray]]] = None,
    return_covariance: bool = True,
    max_iter: int = 100,
) -> RssiFitResult:
    """
    Fit the log-distance path-loss model to RSSI readings.

    Minimizes Σ wᵢ (Prᵢ - Pr(pᵢ; x, Pt, n))² over the enabled parameters,
    with wᵢ = 1/σᵢ². When sensor position covariances are given, their
    effect on each RSSI value is propagated through the model gradient at
    the initial values and added to σᵢ².

    Args:
        positions: Sensor positions, shape (m, d).
        rssi: Received power in dBm, shape (m,).
        frequency: Carrier frequency in Hz, scalar or shape (m,).
        initial_position: Starting (or fixed) source position, shape (d,).
        initial_transmitted_power_dbm: Starting (or fixed) power in dBm.
        initial_path_loss_exponent: Starting (or fixed) exponent.
        estimate_position: Estimate the source position.
        estimate_transmitted_power: Estimate the transmitted power.
        estimate_path_loss: Estimate the path-loss exponent.
        rssi_stds: Optional RSSI standard deviations in dB, shape (m,).
        position_covariances: Optional sensor position covariances.
        return_covariance: If True, compute the covariance of the estimate.
        max_iter: Maximum number of Levenberg-Marquardt iterations.

    Returns:
        RssiFitResult with both estimated and fixed parameters.

    Raises:
        ValueError: If no parameter is enabled, inputs are inconsistent or
            the fit diverges.

    Example:
        >>> sensors = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0]])
        >>> rssi = expected_rssi(sensors, np.array([3.0, 4.0]), -5.0, 2.0, 2.4e9)
        >>> fit = fit_rssi_model(sensors, rssi, 2.4e9, np.array([3.0, 4.0]), 0.0,
        ...                      estimate_position=False)
        >>> round(fit.transmitted_power_dbm, 6)
        -5.0
    """
    positions = np.atleast_2d(np.asarray(positions, dtype=float))
    rssi = np.asarray(rssi, dtype=float)
    m, dims = positions.shape

    if not (estimate_position or estimate_transmitted_power or estimate_path_loss):
        raise ValueError("at least one parameter must be estimated")
    if rssi.shape != (m,):
        raise ValueError(f"Expected {m} rssi values, got shape {rssi.shape}")

    initial_position = np.asarray(initial_position, dtype=float)
    if initial_position.shape != (dims,):
        raise ValueError(
            f"initial_position must have shape ({dims},), got {initial_position.shape}"
        )

    def unpack(x):
        k = 0
        position = initial_position
        power = initial_transmitted_power_dbm
        exponent = initial_path_loss_exponent
        if estimate_position:
            position = x[:dims]
            k = dims
        if estimate_transmitted_power:
            power = x[k]
            k += 1
        if estimate_path_loss:
            exponent = x[k]
        return position, power, exponent

    x0 = []
    if estimate_position:
        x0.extend(initial_position)
    if estimate_transmitted_power:
        x0.append(initial_transmitted_power_dbm)
    if estimate_path_loss:
        x0.append(initial_path_loss_exponent)
    x0 = np.array(x0, dtype=float)

    def h(x):
        position, power, exponent = unpack(x)
        return expected_rssi(positions, position, power, exponent, frequency)

    def jacobian(x):
        position, _, exponent = unpack(x)
        return rssi_jacobian(
            positions,
            position,
            exponent,
            frequency,
            position=estimate_position,
            transmitted_power=estimate_transmitted_power,
            path_loss=estimate_path_loss,
        )

    if rssi_stds is None:
        variances = np.ones(m)
    else:
        variances = np.asarray(rssi_stds, dtype=float) ** 2
        if variances.shape != (m,) or np.any(variances <= 0):
            raise ValueError("rssi_stds must be positive with one value per reading")

    if position_covariances is not None:
        # The gradient w.r.t. the sensor position is minus the one w.r.t. the source
        gradients = rssi_jacobian(
            positions, initial_position, initial_path_loss_exponent, frequency,
            position=True, transmitted_power=False, path_loss=False,
        )
        variances = variances + propagate_position_covariances(gradients, position_covariances)

    result = levenberg_marquardt(
        h,
        jacobian,
        rssi,
        x0,
        weights=1.0 / variances,
        max_iter=max_iter,
        return_covariance=return_covariance,
    )

    position, power, exponent = unpack(result.x)
    return RssiFitResult(
        position=np.array(position, dtype=float),
        transmitted_power_dbm=float(power),
        path_loss_exponent=float(exponent),
        covariance=result.covariance,
        covariance_status=result.covariance_status,
        chi_sq=result.chi_sq,
        converged=result.converged,
    )
