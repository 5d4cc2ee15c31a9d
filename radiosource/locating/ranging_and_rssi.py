"""
Ranging and RSSI radio source estimator.

The source position is estimated from the ranging part of the readings,
then transmitted power and/or path-loss exponent are fitted to the RSSI
part with the position held fixed.
"""

from typing import Optional, Sequence

import numpy as np

from radiosource.locating.base import (
    DEFAULT_PATH_LOSS_ESTIMATION_ENABLED,
    DEFAULT_PATH_LOSS_EXPONENT,
    DEFAULT_TRANSMITTED_POWER_ESTIMATION_ENABLED,
    DEFAULT_USE_HOMOGENEOUS_LINEAR_SOLVER,
    DEFAULT_USE_READING_POSITION_COVARIANCES,
    LaterationSettingsMixin,
    PathLossSettingsMixin,
    RadioSourceEstimator,
    RadioSourceEstimatorListener,
    block_covariance,
    check_rssi_reading,
)
from radiosource.locating.ranging import RangingRadioSourceEstimator
from radiosource.locating.rssi import RssiRadioSourceEstimator
from radiosource.types import Reading


class RangingAndRssiRadioSourceEstimator(
    LaterationSettingsMixin, PathLossSettingsMixin, RadioSourceEstimator
):
    """
    Estimates position, transmitted power and path-loss exponent from
    readings carrying both a distance and an RSSI value.

    Minimum number of readings:
        dims + (1 if power) + (1 if path-loss) + 1
    """

    def __init__(
        self,
        readings: Optional[Sequence[Reading]] = None,
        dims: int = 2,
        initial_position: Optional[np.ndarray] = None,
        initial_transmitted_power_dbm: Optional[float] = None,
        initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
        transmitted_power_estimation_enabled: bool = DEFAULT_TRANSMITTED_POWER_ESTIMATION_ENABLED,
        path_loss_estimation_enabled: bool = DEFAULT_PATH_LOSS_ESTIMATION_ENABLED,
        listener: Optional[RadioSourceEstimatorListener] = None,
        use_reading_position_covariances: bool = DEFAULT_USE_READING_POSITION_COVARIANCES,
        homogeneous_linear_solver_used: bool = DEFAULT_USE_HOMOGENEOUS_LINEAR_SOLVER,
    ):
        super().__init__(dims, initial_position, listener, use_reading_position_covariances)
        self._init_lateration(homogeneous_linear_solver_used)
        self._init_path_loss(
            initial_transmitted_power_dbm,
            initial_path_loss_exponent,
            transmitted_power_estimation_enabled,
            path_loss_estimation_enabled,
        )
        if readings is not None:
            self.readings = readings

    @property
    def min_readings(self) -> int:
        return self._dims + self._num_power_parameters + 1

    @property
    def is_ready(self) -> bool:
        if (
            self._path_loss_estimation_enabled
            and not self._transmitted_power_estimation_enabled
            and self._initial_transmitted_power_dbm is None
        ):
            return False
        return super().is_ready

    def _check_reading(self, reading: Reading) -> None:
        if not reading.has_ranging:
            raise ValueError("reading has no distance")
        check_rssi_reading(reading)

    def _estimate(self) -> None:
        ranging = RangingRadioSourceEstimator(
            self._readings,
            dims=self._dims,
            initial_position=self._initial_position,
            use_reading_position_covariances=self._use_reading_position_covariances,
            homogeneous_linear_solver_used=self._homogeneous_linear_solver_used,
        )
        ranging.estimate()
        position = ranging.estimated_position

        if self._num_power_parameters == 0:
            self._set_result(
                position,
                self._initial_transmitted_power_dbm,
                self._initial_path_loss_exponent,
                covariance=ranging.covariance,
                status=ranging.covariance_status,
                layout=(True, False, False),
            )
            return

        rssi = RssiRadioSourceEstimator(
            self._readings,
            dims=self._dims,
            initial_position=position,
            initial_transmitted_power_dbm=self._initial_transmitted_power_dbm,
            initial_path_loss_exponent=self._initial_path_loss_exponent,
            position_estimation_enabled=False,
            transmitted_power_estimation_enabled=self._transmitted_power_estimation_enabled,
            path_loss_estimation_enabled=self._path_loss_estimation_enabled,
            use_reading_position_covariances=self._use_reading_position_covariances,
        )
        rssi.estimate()

        covariance, status = block_covariance(
            ranging.covariance,
            ranging.covariance_status,
            rssi.covariance,
            rssi.covariance_status,
        )
        self._set_result(
            position,
            rssi.estimated_transmitted_power_dbm,
            rssi.estimated_path_loss_exponent,
            covariance=covariance,
            status=status,
            layout=(
                True,
                self._transmitted_power_estimation_enabled,
                self._path_loss_estimation_enabled,
            ),
        )
