"""
RSSI radio source estimator.

Fits the log-distance path-loss model

    Pr = 10·n·log10(c/(4πf)) + Pt - 5·n·log10(d²)

to received signal strength readings, estimating any combination of the
source position, its transmitted power Pt and the path-loss exponent n.
"""

from typing import Optional, Sequence

import numpy as np

from radiosource.errors import SolverError
from radiosource.locating.base import (
    DEFAULT_PATH_LOSS_ESTIMATION_ENABLED,
    DEFAULT_PATH_LOSS_EXPONENT,
    DEFAULT_TRANSMITTED_POWER_ESTIMATION_ENABLED,
    DEFAULT_USE_READING_POSITION_COVARIANCES,
    PathLossSettingsMixin,
    RadioSourceEstimator,
    RadioSourceEstimatorListener,
    check_rssi_reading,
    rssi_arrays,
)
from radiosource.rf.rssi_fitting import fit_rssi_model
from radiosource.types import Reading


class RssiRadioSourceEstimator(PathLossSettingsMixin, RadioSourceEstimator):
    """
    Estimates position, transmitted power and path-loss exponent from RSSI.

    Parameters that are not estimated are taken from the initial values:
    a disabled position requires ``initial_position`` and a disabled
    transmitted power requires ``initial_transmitted_power_dbm``. When
    estimated, the initial position defaults to the centroid of the
    readings and the initial power to their mean RSSI.

    Minimum number of readings:
        (dims if position) + (1 if power) + (1 if path-loss) + 1
    """

    def __init__(
        self,
        readings: Optional[Sequence[Reading]] = None,
        dims: int = 2,
        initial_position: Optional[np.ndarray] = None,
        initial_transmitted_power_dbm: Optional[float] = None,
        initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
        position_estimation_enabled: bool = True,
        transmitted_power_estimation_enabled: bool = DEFAULT_TRANSMITTED_POWER_ESTIMATION_ENABLED,
        path_loss_estimation_enabled: bool = DEFAULT_PATH_LOSS_ESTIMATION_ENABLED,
        listener: Optional[RadioSourceEstimatorListener] = None,
        use_reading_position_covariances: bool = DEFAULT_USE_READING_POSITION_COVARIANCES,
    ):
        super().__init__(dims, initial_position, listener, use_reading_position_covariances)
        self._init_path_loss(
            initial_transmitted_power_dbm,
            initial_path_loss_exponent,
            transmitted_power_estimation_enabled,
            path_loss_estimation_enabled,
        )
        self._position_estimation_enabled = bool(position_estimation_enabled)
        self._chi_sq: Optional[float] = None
        if readings is not None:
            self.readings = readings

    @property
    def position_estimation_enabled(self) -> bool:
        return self._position_estimation_enabled

    @position_estimation_enabled.setter
    def position_estimation_enabled(self, value: bool) -> None:
        self._check_lock()
        self._position_estimation_enabled = bool(value)

    @property
    def min_readings(self) -> int:
        n = self._num_power_parameters + 1
        if self._position_estimation_enabled:
            n += self._dims
        return n

    @property
    def is_ready(self) -> bool:
        if not (
            self._position_estimation_enabled
            or self._transmitted_power_estimation_enabled
            or self._path_loss_estimation_enabled
        ):
            return False
        if not self._position_estimation_enabled and self._initial_position is None:
            return False
        if (
            not self._transmitted_power_estimation_enabled
            and self._initial_transmitted_power_dbm is None
        ):
            return False
        return super().is_ready

    @property
    def chi_sq(self) -> Optional[float]:
        """Weighted sum of squared RSSI residuals of the last estimation."""
        return self._chi_sq

    def _check_reading(self, reading: Reading) -> None:
        check_rssi_reading(reading)

    def _estimate(self) -> None:
        positions, rssi, stds, frequencies, covariances = rssi_arrays(self._readings)

        initial_position = self._initial_position
        if initial_position is None:
            initial_position = positions.mean(axis=0)
        initial_power = self._initial_transmitted_power_dbm
        if initial_power is None:
            initial_power = float(rssi.mean())

        try:
            fit = fit_rssi_model(
                positions,
                rssi,
                frequencies,
                initial_position,
                initial_power,
                self._initial_path_loss_exponent,
                estimate_position=self._position_estimation_enabled,
                estimate_transmitted_power=self._transmitted_power_estimation_enabled,
                estimate_path_loss=self._path_loss_estimation_enabled,
                rssi_stds=stds,
                position_covariances=covariances if self._use_reading_position_covariances else None,
            )
        except ValueError as e:
            raise SolverError(f"path-loss model fit failed: {e}") from e

        self._chi_sq = fit.chi_sq
        self._set_result(
            fit.position,
            fit.transmitted_power_dbm,
            fit.path_loss_exponent,
            covariance=fit.covariance,
            status=fit.covariance_status,
            layout=(
                self._position_estimation_enabled,
                self._transmitted_power_estimation_enabled,
                self._path_loss_estimation_enabled,
            ),
        )
