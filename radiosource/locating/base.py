"""
Base classes for radio source estimators.

Every estimator follows the same life cycle:

    not ready --(readings set)--> ready --estimate()--> locked --> ready

While an estimation runs the estimator is locked: any attempt to change
its configuration, or to start another estimation, raises LockedError.
This also applies to calls made from listener callbacks, which receive
the estimator itself and run synchronously on the estimating thread.

Estimation results are only replaced when an estimation succeeds.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy import linalg

from radiosource.errors import LockedError, NotReadyError, SolverError
from radiosource.rf.lateration import homogeneous_lateration, inhomogeneous_lateration
from radiosource.rf.measurement_models import dbm_to_power, inflate_distance_std, power_to_dbm
from radiosource.types import (
    CovarianceStatus,
    LocatedRadioSource,
    Reading,
    locate_radio_source,
)

logger = logging.getLogger(__name__)

# Default estimator settings
DEFAULT_DISTANCE_STANDARD_DEVIATION = 1e-3  # m
DEFAULT_POWER_STANDARD_DEVIATION = 1.0  # dB
DEFAULT_PATH_LOSS_EXPONENT = 2.0
DEFAULT_USE_READING_POSITION_COVARIANCES = True
DEFAULT_USE_HOMOGENEOUS_LINEAR_SOLVER = True
DEFAULT_TRANSMITTED_POWER_ESTIMATION_ENABLED = True
DEFAULT_PATH_LOSS_ESTIMATION_ENABLED = False


class RadioSourceEstimatorListener:
    """
    Receives notifications while a radio source estimator runs.

    Subclass and override the callbacks of interest; the defaults do
    nothing. Callbacks run synchronously while the estimator is locked,
    so they may read results and settings but cannot modify them.
    """

    def on_estimate_start(self, estimator) -> None:
        """Called once when an estimation starts."""

    def on_estimate_end(self, estimator) -> None:
        """Called once when an estimation ends, successfully or not."""

    def on_estimate_next_iteration(self, estimator, iteration: int) -> None:
        """Called after each robust sampling iteration (1-based)."""

    def on_estimate_progress_change(self, estimator, progress: float) -> None:
        """Called when the estimated progress in [0, 1] advances."""


@dataclass
class RadioSourceSolution:
    """Position and optional power parameters of a radio source."""

    position: np.ndarray
    transmitted_power_dbm: Optional[float] = None
    path_loss_exponent: Optional[float] = None


def combine_covariance_status(*statuses: CovarianceStatus) -> CovarianceStatus:
    """Status of a covariance assembled from several blocks."""
    if all(s == CovarianceStatus.AVAILABLE for s in statuses):
        return CovarianceStatus.AVAILABLE
    if any(s == CovarianceStatus.UNAVAILABLE for s in statuses):
        return CovarianceStatus.UNAVAILABLE
    return CovarianceStatus.NOT_REQUESTED


def block_covariance(
    position_covariance: Optional[np.ndarray],
    position_status: CovarianceStatus,
    power_covariance: Optional[np.ndarray],
    power_status: CovarianceStatus,
) -> Tuple[Optional[np.ndarray], CovarianceStatus]:
    """Block-diagonal covariance of position and power parameters."""
    status = combine_covariance_status(position_status, power_status)
    if position_covariance is None or power_covariance is None:
        if status == CovarianceStatus.AVAILABLE:
            status = CovarianceStatus.NOT_REQUESTED
        return None, status
    return linalg.block_diag(position_covariance, power_covariance), status


def ranging_arrays(
    readings: Sequence[Reading], use_position_covariances: bool
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Stack ranging readings into arrays.

    Args:
        readings: Readings with a distance.
        use_position_covariances: Inflate each distance standard deviation
            with the accuracy of the reading position covariance.

    Returns:
        Tuple of (positions (N, d), distances (N,), distance stds (N,)).
    """
    positions = np.array([r.position for r in readings])
    distances = np.array([r.distance for r in readings], dtype=float)

    stds = np.empty(len(readings))
    for i, r in enumerate(readings):
        std = r.distance_std if r.distance_std is not None else DEFAULT_DISTANCE_STANDARD_DEVIATION
        if use_position_covariances:
            std = inflate_distance_std(std, r.position_covariance)
        stds[i] = std
    return positions, distances, stds


def rssi_arrays(
    readings: Sequence[Reading],
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, List[Optional[np.ndarray]]]:
    """
    Stack RSSI readings into arrays.

    Returns:
        Tuple of (positions (N, d), rssi (N,), rssi stds (N,),
        frequencies (N,), position covariances).
    """
    positions = np.array([r.position for r in readings])
    rssi = np.array([r.rssi for r in readings], dtype=float)
    stds = np.array(
        [r.rssi_std if r.rssi_std is not None else DEFAULT_POWER_STANDARD_DEVIATION for r in readings]
    )
    frequencies = np.array([r.source.frequency for r in readings], dtype=float)
    covariances = [r.position_covariance for r in readings]
    return positions, rssi, stds, frequencies, covariances


def check_rssi_reading(reading: Reading) -> None:
    if not reading.has_rssi:
        raise ValueError("reading has no rssi")
    if getattr(reading.source, "frequency", None) is None:
        raise ValueError("rssi readings require a radio source with a frequency")


class RadioSourceEstimator(ABC):
    """
    Abstract base class for radio source estimators.

    Subclasses define the minimum number of readings, the checks applied
    to each reading and the estimation itself (``_estimate``), which must
    publish its outcome through ``_set_result``.
    """

    # Error raised when an estimation fails numerically
    _failure_error = SolverError

    def __init__(
        self,
        dims: int = 2,
        initial_position: Optional[np.ndarray] = None,
        listener: Optional[RadioSourceEstimatorListener] = None,
        use_reading_position_covariances: bool = DEFAULT_USE_READING_POSITION_COVARIANCES,
    ):
        """
        Initialize the estimator.

        Args:
            dims: Number of dimensions of positions (2 or 3).
            initial_position: Optional initial source position, shape (dims,).
            listener: Optional listener notified during estimation.
            use_reading_position_covariances: Account for the position
                covariance of each reading when weighting measurements.
        """
        if dims not in (2, 3):
            raise ValueError(f"dims must be 2 or 3, got {dims}")
        self._dims = dims
        self._locked = False
        self._readings: Optional[List[Reading]] = None
        self._listener = listener
        self._initial_position = self._validate_position(initial_position)
        self._use_reading_position_covariances = bool(use_reading_position_covariances)

        self._estimated_position: Optional[np.ndarray] = None
        self._estimated_power_dbm: Optional[float] = None
        self._estimated_path_loss_exponent: Optional[float] = None
        self._covariance: Optional[np.ndarray] = None
        self._covariance_status = CovarianceStatus.NOT_REQUESTED
        self._layout = (False, False, False)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    @property
    def dims(self) -> int:
        return self._dims

    @property
    def is_locked(self) -> bool:
        """True while an estimation is running."""
        return self._locked

    def _check_lock(self) -> None:
        if self._locked:
            raise LockedError()

    @property
    @abstractmethod
    def min_readings(self) -> int:
        """Minimum number of readings required to estimate."""

    @property
    def readings(self) -> Optional[List[Reading]]:
        return self._readings

    @readings.setter
    def readings(self, readings: Sequence[Reading]) -> None:
        self._check_lock()
        self._readings = self._validate_readings(readings)

    def _validate_readings(self, readings: Sequence[Reading]) -> List[Reading]:
        if readings is None:
            raise ValueError("readings must not be None")
        readings = list(readings)
        if len(readings) < self.min_readings:
            raise ValueError(
                f"At least {self.min_readings} readings are required, got {len(readings)}"
            )
        for reading in readings:
            if not isinstance(reading, Reading):
                raise TypeError(f"Expected Reading, got {type(reading).__name__}")
            if reading.dims != self._dims:
                raise ValueError(
                    f"Expected {self._dims}D readings, got a {reading.dims}D reading"
                )
            self._check_reading(reading)
        return readings

    def _check_reading(self, reading: Reading) -> None:
        """Reject a reading this estimator cannot use."""

    @property
    def listener(self) -> Optional[RadioSourceEstimatorListener]:
        return self._listener

    @listener.setter
    def listener(self, listener: Optional[RadioSourceEstimatorListener]) -> None:
        self._check_lock()
        self._listener = listener

    @property
    def initial_position(self) -> Optional[np.ndarray]:
        return self._initial_position

    @initial_position.setter
    def initial_position(self, position: Optional[np.ndarray]) -> None:
        self._check_lock()
        self._initial_position = self._validate_position(position)

    def _validate_position(self, position: Optional[np.ndarray]) -> Optional[np.ndarray]:
        if position is None:
            return None
        position = np.array(position, dtype=float)
        if position.shape != (self._dims,):
            raise ValueError(
                f"position must have shape ({self._dims},), got {position.shape}"
            )
        return position

    @property
    def use_reading_position_covariances(self) -> bool:
        return self._use_reading_position_covariances

    @use_reading_position_covariances.setter
    def use_reading_position_covariances(self, value: bool) -> None:
        self._check_lock()
        self._use_reading_position_covariances = bool(value)

    @property
    def is_ready(self) -> bool:
        """True when estimate() can be called."""
        return self._readings is not None and len(self._readings) >= self.min_readings

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------
    def estimate(self) -> LocatedRadioSource:
        """
        Estimate the radio source.

        Returns:
            The located radio source (also available as
            ``estimated_radio_source``).

        Raises:
            LockedError: If an estimation is already running.
            NotReadyError: If the estimator is not ready. Nothing is done.
            RadioSourceError: If the estimation fails. Previous results are
                kept and the estimator is unlocked.
        """
        self._check_lock()
        if not self.is_ready:
            raise NotReadyError()

        self._locked = True
        try:
            if self._listener is not None:
                self._listener.on_estimate_start(self)
            try:
                self._estimate()
            except np.linalg.LinAlgError as e:
                raise self._failure_error(f"estimation failed: {e}") from e
            finally:
                if self._listener is not None:
                    self._listener.on_estimate_end(self)
        finally:
            self._locked = False

        return self.estimated_radio_source

    @abstractmethod
    def _estimate(self) -> None:
        """Run the estimation and publish it with _set_result."""

    def _notify_iteration(self, iteration: int) -> None:
        if self._listener is not None:
            self._listener.on_estimate_next_iteration(self, iteration)

    def _notify_progress(self, progress: float) -> None:
        if self._listener is not None:
            self._listener.on_estimate_progress_change(self, progress)

    def _set_result(
        self,
        position: np.ndarray,
        transmitted_power_dbm: Optional[float] = None,
        path_loss_exponent: Optional[float] = None,
        covariance: Optional[np.ndarray] = None,
        status: CovarianceStatus = CovarianceStatus.NOT_REQUESTED,
        layout: Tuple[bool, bool, bool] = (True, False, False),
    ) -> None:
        """
        Publish an estimation result.

        Args:
            position: Estimated (or fixed) source position.
            transmitted_power_dbm: Transmitted power, or None.
            path_loss_exponent: Path-loss exponent, or None.
            covariance: Covariance of the estimated parameters, or None.
            status: Outcome of the covariance computation.
            layout: Which of (position, power, path-loss exponent) are
                estimated, i.e. present in the covariance in that order.
        """
        if status == CovarianceStatus.UNAVAILABLE:
            logger.warning("Covariance requested but unavailable for %s", type(self).__name__)
        self._estimated_position = np.asarray(position, dtype=float).copy()
        self._estimated_power_dbm = None if transmitted_power_dbm is None else float(transmitted_power_dbm)
        self._estimated_path_loss_exponent = None if path_loss_exponent is None else float(path_loss_exponent)
        self._covariance = covariance
        self._covariance_status = status
        self._layout = layout

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------
    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        return self._estimated_position

    @property
    def covariance(self) -> Optional[np.ndarray]:
        """Covariance of all estimated parameters (position, power, exponent)."""
        return self._covariance

    @property
    def covariance_status(self) -> CovarianceStatus:
        return self._covariance_status

    @property
    def estimated_position_covariance(self) -> Optional[np.ndarray]:
        if self._covariance is None or not self._layout[0]:
            return None
        return self._covariance[: self._dims, : self._dims]

    def _variance_at(self, index: int) -> Optional[float]:
        if self._covariance is None:
            return None
        return float(self._covariance[index, index])

    @property
    def estimated_transmitted_power_dbm(self) -> Optional[float]:
        return self._estimated_power_dbm

    @property
    def estimated_transmitted_power(self) -> Optional[float]:
        """Estimated transmitted power in mW, or None."""
        if self._estimated_power_dbm is None:
            return None
        return dbm_to_power(self._estimated_power_dbm)

    @property
    def estimated_transmitted_power_variance(self) -> Optional[float]:
        if not self._layout[1]:
            return None
        return self._variance_at(self._dims if self._layout[0] else 0)

    @property
    def estimated_path_loss_exponent(self) -> Optional[float]:
        return self._estimated_path_loss_exponent

    @property
    def estimated_path_loss_exponent_variance(self) -> Optional[float]:
        if not self._layout[2]:
            return None
        index = (self._dims if self._layout[0] else 0) + (1 if self._layout[1] else 0)
        return self._variance_at(index)

    @property
    def estimated_radio_source(self) -> Optional[LocatedRadioSource]:
        """Source of the readings together with its estimated location."""
        if self._estimated_position is None or not self._readings:
            return None
        return locate_radio_source(
            self._readings[0].source,
            self._estimated_position,
            position_covariance=self.estimated_position_covariance,
            transmitted_power_dbm=self._estimated_power_dbm,
            transmitted_power_variance=self.estimated_transmitted_power_variance,
            path_loss_exponent=self._estimated_path_loss_exponent,
            path_loss_exponent_variance=self.estimated_path_loss_exponent_variance,
        )


class LaterationSettingsMixin:
    """Choice of the linear lateration solver."""

    def _init_lateration(self, homogeneous_linear_solver_used: bool) -> None:
        self._homogeneous_linear_solver_used = bool(homogeneous_linear_solver_used)

    @property
    def homogeneous_linear_solver_used(self) -> bool:
        return self._homogeneous_linear_solver_used

    @homogeneous_linear_solver_used.setter
    def homogeneous_linear_solver_used(self, value: bool) -> None:
        self._check_lock()
        self._homogeneous_linear_solver_used = bool(value)

    def _laterate(self, positions: np.ndarray, distances: np.ndarray) -> np.ndarray:
        if self._homogeneous_linear_solver_used:
            return homogeneous_lateration(positions, distances)
        return inhomogeneous_lateration(positions, distances)


class PathLossSettingsMixin:
    """Transmitted power and path-loss exponent settings."""

    def _init_path_loss(
        self,
        initial_transmitted_power_dbm: Optional[float],
        initial_path_loss_exponent: float,
        transmitted_power_estimation_enabled: bool,
        path_loss_estimation_enabled: bool,
    ) -> None:
        self._initial_transmitted_power_dbm = initial_transmitted_power_dbm
        self._initial_path_loss_exponent = float(initial_path_loss_exponent)
        self._transmitted_power_estimation_enabled = bool(transmitted_power_estimation_enabled)
        self._path_loss_estimation_enabled = bool(path_loss_estimation_enabled)

    @property
    def initial_transmitted_power_dbm(self) -> Optional[float]:
        return self._initial_transmitted_power_dbm

    @initial_transmitted_power_dbm.setter
    def initial_transmitted_power_dbm(self, value: Optional[float]) -> None:
        self._check_lock()
        self._initial_transmitted_power_dbm = None if value is None else float(value)

    @property
    def initial_transmitted_power(self) -> Optional[float]:
        """Initial transmitted power in mW, or None."""
        if self._initial_transmitted_power_dbm is None:
            return None
        return dbm_to_power(self._initial_transmitted_power_dbm)

    @initial_transmitted_power.setter
    def initial_transmitted_power(self, value: Optional[float]) -> None:
        self._check_lock()
        if value is None:
            self._initial_transmitted_power_dbm = None
            return
        if value <= 0:
            raise ValueError(f"transmitted power must be positive, got {value}")
        self._initial_transmitted_power_dbm = float(power_to_dbm(value))

    @property
    def initial_path_loss_exponent(self) -> float:
        return self._initial_path_loss_exponent

    @initial_path_loss_exponent.setter
    def initial_path_loss_exponent(self, value: float) -> None:
        self._check_lock()
        self._initial_path_loss_exponent = float(value)

    @property
    def transmitted_power_estimation_enabled(self) -> bool:
        return self._transmitted_power_estimation_enabled

    @transmitted_power_estimation_enabled.setter
    def transmitted_power_estimation_enabled(self, value: bool) -> None:
        self._check_lock()
        self._transmitted_power_estimation_enabled = bool(value)

    @property
    def path_loss_estimation_enabled(self) -> bool:
        return self._path_loss_estimation_enabled

    @path_loss_estimation_enabled.setter
    def path_loss_estimation_enabled(self, value: bool) -> None:
        self._check_lock()
        self._path_loss_estimation_enabled = bool(value)

    @property
    def _num_power_parameters(self) -> int:
        return int(self._transmitted_power_estimation_enabled) + int(self._path_loss_estimation_enabled)


class MixedReadingsMixin:
    """
    Reading requirements of estimators splitting mixed readings.

    Readings carrying a distance feed a ranging pass, readings carrying an
    RSSI value feed an RSSI pass. A reading carrying both counts for both.
    When too few readings carry a distance, the position is estimated by
    the RSSI pass instead.
    """

    @property
    def min_readings(self) -> int:
        return self._dims + self._num_power_parameters + 1

    @property
    def min_ranging_readings(self) -> int:
        return self._dims + 1

    @property
    def min_rssi_readings(self) -> int:
        return self.min_readings

    def _check_reading(self, reading: Reading) -> None:
        if reading.has_rssi:
            check_rssi_reading(reading)

    @property
    def num_ranging_readings(self) -> int:
        if self._readings is None:
            return 0
        return sum(1 for r in self._readings if r.has_ranging)

    @property
    def num_rssi_readings(self) -> int:
        if self._readings is None:
            return 0
        return sum(1 for r in self._readings if r.has_rssi)

    @property
    def rssi_position_enabled(self) -> bool:
        """True when the position must come from the RSSI pass."""
        return self.num_ranging_readings < self.min_ranging_readings

    def _runs_ranging_pass(self) -> bool:
        return not self.rssi_position_enabled

    def _runs_rssi_pass(self) -> bool:
        return self._num_power_parameters > 0 or self.rssi_position_enabled

    def _has_pass_readings(self) -> bool:
        """Whether each pass to run has enough readings and initial values."""
        if self._runs_rssi_pass():
            if self.num_rssi_readings < self.min_rssi_readings:
                return False
            if (
                not self._transmitted_power_estimation_enabled
                and self._initial_transmitted_power_dbm is None
            ):
                return False
        return True

    def _publish_passes(self, ranging_estimator, rssi_estimator) -> None:
        """Publish the result of the passes that ran."""
        if rssi_estimator is None:
            self._set_result(
                ranging_estimator.estimated_position,
                self._initial_transmitted_power_dbm,
                self._initial_path_loss_exponent,
                covariance=ranging_estimator.covariance,
                status=ranging_estimator.covariance_status,
                layout=(True, False, False),
            )
            return

        if ranging_estimator is None:
            covariance = rssi_estimator.covariance
            status = rssi_estimator.covariance_status
        else:
            covariance, status = block_covariance(
                ranging_estimator.covariance,
                ranging_estimator.covariance_status,
                rssi_estimator.covariance,
                rssi_estimator.covariance_status,
            )

        self._set_result(
            rssi_estimator.estimated_position,
            rssi_estimator.estimated_transmitted_power_dbm,
            rssi_estimator.estimated_path_loss_exponent,
            covariance=covariance,
            status=status,
            layout=(
                True,
                self._transmitted_power_estimation_enabled,
                self._path_loss_estimation_enabled,
            ),
        )
