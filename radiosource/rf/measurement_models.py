"""
Radio measurement models for radio source estimation.

This module implements the measurement functions relating an unknown
radio source to the readings taken at known sensor positions:
- Ranging: distance between sensor and source
- RSSI: received power following the log-distance (Friis) path-loss model
- Unit conversions between dBm and linear power
- Accuracy of a position covariance (average semi-axis length)

RSSI model:
    Pr(dBm) = k_dB + Pt(dBm) - 5·n·log10(d²)
    k_dB    = 10·n·log10(c / (4·π·f))

where Pt is the transmitted power, n the path-loss exponent, f the
carrier frequency of the source and d the sensor-to-source distance.
With n = 2 this is the free-space Friis equation.
"""

from typing import Optional, Union

import numpy as np
from scipy import linalg, stats

# Physical constants
SPEED_OF_LIGHT = 299792458.0  # m/s

# Floor for squared distances inside logarithms (sensor on top of source)
_MIN_SQUARED_DISTANCE = 1e-12

ArrayLike = Union[float, np.ndarray]


# =============================================================================
# Power unit conversions
# =============================================================================
def dbm_to_power(dbm: ArrayLike) -> ArrayLike:
    """
    Convert power from dBm to mW.

    Args:
        dbm: Power in dBm.

    Returns:
        Power in mW, 10^(dBm/10).

    Example:
        >>> dbm_to_power(0.0)
        1.0
        >>> round(dbm_to_power(20.0), 6)
        100.0
    """
    if np.ndim(dbm):
        return 10.0 ** (np.asarray(dbm, dtype=float) / 10.0)
    return float(10.0 ** (dbm / 10.0))


def power_to_dbm(power: ArrayLike) -> ArrayLike:
    """
    Convert power from mW to dBm.

    Args:
        power: Power in mW, must be positive.

    Returns:
        Power in dBm, 10·log10(power).

    Raises:
        ValueError: If power is not positive.
    """
    if np.any(np.asarray(power) <= 0):
        raise ValueError("power must be positive")
    if np.ndim(power):
        return 10.0 * np.log10(np.asarray(power, dtype=float))
    return float(10.0 * np.log10(power))


# =============================================================================
# Path-loss model
# =============================================================================
def frequency_gain_db(frequency: ArrayLike, path_loss_exponent: float = 2.0) -> ArrayLike:
    """
    Frequency dependent constant k_dB of the path-loss model.

    k_dB = 10·n·log10(c / (4·π·f))

    Args:
        frequency: Carrier frequency in Hz.
        path_loss_exponent: Path-loss exponent n. Defaults to 2.0 (free space).

    Returns:
        k_dB in dB.

    Example:
        >>> # Free space loss at 1 m for 2.4 GHz is about 40 dB
        >>> round(float(frequency_gain_db(2.4e9)), 2)
        -40.05
    """
    return path_loss_exponent * _wavelength_term_db(frequency)


def _wavelength_term_db(frequency: ArrayLike) -> ArrayLike:
    """Return 10·log10(c / (4·π·f))."""
    frequency = np.asarray(frequency, dtype=float)
    if np.any(frequency <= 0):
        raise ValueError("frequency must be positive")
    return 10.0 * np.log10(SPEED_OF_LIGHT / (4.0 * np.pi * frequency))


def squared_distances(sensor_positions: np.ndarray, source_position: np.ndarray) -> np.ndarray:
    """Squared distances between sensors (m, d) and a source (d,)."""
    diff = np.atleast_2d(sensor_positions) - np.asarray(source_position, dtype=float)
    return np.sum(diff**2, axis=1)


def expected_rssi(
    sensor_positions: np.ndarray,
    source_position: np.ndarray,
    transmitted_power_dbm: float,
    path_loss_exponent: float,
    frequency: ArrayLike,
) -> np.ndarray:
    """
    Received power predicted by the path-loss model.

    Pr = 10·n·log10(c/(4πf)) + Pt - 5·n·log10(d²)

    Args:
        sensor_positions: Sensor positions, shape (m, d) or (d,).
        source_position: Radio source position, shape (d,).
        transmitted_power_dbm: Transmitted power Pt in dBm.
        path_loss_exponent: Path-loss exponent n.
        frequency: Carrier frequency in Hz, scalar or shape (m,).

    Returns:
        Predicted RSSI values in dBm, shape (m,).

    Example:
        >>> sensors = np.array([[1.0, 0.0], [10.0, 0.0]])
        >>> rssi = expected_rssi(sensors, np.zeros(2), 0.0, 2.0, 2.4e9)
        >>> round(float(rssi[0] - rssi[1]), 6)  # 20 dB per decade for n=2
        20.0
    """
    d2 = np.maximum(squared_distances(sensor_positions, source_position), _MIN_SQUARED_DISTANCE)
    return (
        frequency_gain_db(frequency, path_loss_exponent)
        + transmitted_power_dbm
        - 5.0 * path_loss_exponent * np.log10(d2)
    )


def rssi_jacobian(
    sensor_positions: np.ndarray,
    source_position: np.ndarray,
    path_loss_exponent: float,
    frequency: ArrayLike,
    position: bool = True,
    transmitted_power: bool = True,
    path_loss: bool = False,
) -> np.ndarray:
    """
    Jacobian of the RSSI model with respect to the enabled parameters.

    Columns are ordered as position coordinates, transmitted power, then
    path-loss exponent, skipping disabled parameters:
        ∂Pr/∂x_j = -10·n·(x_j - p_j) / (ln(10)·d²)
        ∂Pr/∂Pt  = 1
        ∂Pr/∂n   = 10·log10(c/(4πf)) - 5·log10(d²)

    Args:
        sensor_positions: Sensor positions p, shape (m, d).
        source_position: Source position x, shape (d,).
        path_loss_exponent: Path-loss exponent n.
        frequency: Carrier frequency in Hz, scalar or shape (m,).
        position: Include the position columns.
        transmitted_power: Include the transmitted power column.
        path_loss: Include the path-loss exponent column.

    Returns:
        Jacobian matrix of shape (m, k).
    """
    sensor_positions = np.atleast_2d(np.asarray(sensor_positions, dtype=float))
    source_position = np.asarray(source_position, dtype=float)
    m = sensor_positions.shape[0]

    diff = source_position - sensor_positions
    d2 = np.maximum(np.sum(diff**2, axis=1), _MIN_SQUARED_DISTANCE)

    columns = []
    if position:
        columns.append(-10.0 * path_loss_exponent * diff / (np.log(10.0) * d2[:, None]))
    if transmitted_power:
        columns.append(np.ones((m, 1)))
    if path_loss:
        term = _wavelength_term_db(frequency) - 5.0 * np.log10(d2)
        columns.append(np.broadcast_to(term, (m,)).reshape(m, 1))

    if not columns:
        return np.zeros((m, 0))
    return np.hstack(columns)


def rssi_to_distance(
    rssi_dbm: ArrayLike,
    transmitted_power_dbm: float,
    path_loss_exponent: float,
    frequency: ArrayLike,
) -> ArrayLike:
    """
    Distance implied by an RSSI value through the inverse path-loss model.

    d = 10^((k_dB + Pt - Pr) / (10·n))

    Args:
        rssi_dbm: Received power in dBm.
        transmitted_power_dbm: Transmitted power in dBm.
        path_loss_exponent: Path-loss exponent n, must be positive.
        frequency: Carrier frequency in Hz.

    Returns:
        Distance in meters.
    """
    if path_loss_exponent <= 0:
        raise ValueError("path_loss_exponent must be positive")
    k_db = frequency_gain_db(frequency, path_loss_exponent)
    return 10.0 ** ((k_db + transmitted_power_dbm - np.asarray(rssi_dbm)) / (10.0 * path_loss_exponent))


def ranging_residuals(
    sensor_positions: np.ndarray,
    distances: np.ndarray,
    source_position: np.ndarray,
) -> np.ndarray:
    """Absolute ranging residuals |‖x - pᵢ‖ - dᵢ|, shape (m,)."""
    predicted = np.sqrt(squared_distances(sensor_positions, source_position))
    return np.abs(predicted - np.asarray(distances, dtype=float))


# =============================================================================
# Accuracy of a position covariance
# =============================================================================
def confidence_to_std_factor(confidence: float, dims: int) -> float:
    """
    Standard deviation factor enclosing a given probability mass.

    For a d-dimensional Gaussian, the ellipsoid scaled by k standard
    deviations contains probability P(χ²_d ≤ k²).

    Args:
        confidence: Probability mass in (0, 1).
        dims: Number of dimensions.

    Returns:
        Factor k = sqrt(χ²_d⁻¹(confidence)).
    """
    if not 0.0 < confidence < 1.0:
        raise ValueError(f"confidence must be in (0, 1), got {confidence}")
    return float(np.sqrt(stats.chi2.ppf(confidence, dims)))


def average_accuracy(
    covariance: np.ndarray,
    std_factor: float = 1.0,
    confidence: Optional[float] = None,
) -> float:
    """
    Average accuracy (mean semi-axis length) of a position covariance.

    The uncertainty ellipse (2D) or ellipsoid (3D) of the covariance has
    semi-axes k·sqrt(λᵢ); the average accuracy is their mean.

    Args:
        covariance: Symmetric positive definite matrix (d × d).
        std_factor: Number of standard deviations k. Ignored when
                    confidence is given.
        confidence: Optional probability mass to derive k from.

    Returns:
        Average accuracy in the units of the position.

    Raises:
        ValueError: If covariance is not square, symmetric and positive definite.

    Example:
        >>> round(average_accuracy(np.diag([4.0, 1.0])), 6)
        1.5
    """
    covariance = np.asarray(covariance, dtype=float)
    if covariance.ndim != 2 or covariance.shape[0] != covariance.shape[1]:
        raise ValueError(f"covariance must be square, got shape {covariance.shape}")
    if not np.allclose(covariance, covariance.T):
        raise ValueError("covariance must be symmetric")
    try:
        linalg.cholesky(covariance)
    except linalg.LinAlgError as e:
        raise ValueError(f"covariance must be positive definite: {e}") from e

    if confidence is not None:
        std_factor = confidence_to_std_factor(confidence, covariance.shape[0])

    eigenvalues = linalg.eigvalsh(covariance)
    return float(std_factor * np.mean(np.sqrt(eigenvalues)))


def inflate_distance_std(distance_std: float, position_covariance: Optional[np.ndarray]) -> float:
    """
    Combine a distance standard deviation with sensor position uncertainty.

    σ = sqrt(σ_d² + a²), where a is the average accuracy (one standard
    deviation) of the sensor position covariance. A covariance that is not
    positive definite is ignored.

    Args:
        distance_std: Standard deviation of the distance measurement.
        position_covariance: Optional covariance of the sensor position.

    Returns:
        Inflated standard deviation.
    """
    if position_covariance is None:
        return distance_std
    try:
        accuracy = average_accuracy(position_covariance)
    except ValueError:
        return distance_std
    return float(np.sqrt(distance_std**2 + accuracy**2))
