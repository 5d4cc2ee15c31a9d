"""
Radio source estimation from mixed ranging and RSSI readings.

Readings may carry a distance, an RSSI value or both. The position is
laterated from the readings carrying a distance, then transmitted power
and path-loss exponent are fitted to the readings carrying an RSSI value
with the position held fixed. When too few readings carry a distance, the
RSSI fit estimates the position too.
"""

import logging
from typing import Optional, Sequence

import numpy as np

from radiosource.locating.base import (
    DEFAULT_PATH_LOSS_ESTIMATION_ENABLED,
    DEFAULT_PATH_LOSS_EXPONENT,
    DEFAULT_TRANSMITTED_POWER_ESTIMATION_ENABLED,
    DEFAULT_USE_HOMOGENEOUS_LINEAR_SOLVER,
    DEFAULT_USE_READING_POSITION_COVARIANCES,
    LaterationSettingsMixin,
    MixedReadingsMixin,
    PathLossSettingsMixin,
    RadioSourceEstimator,
    RadioSourceEstimatorListener,
)
from radiosource.locating.ranging import RangingRadioSourceEstimator
from radiosource.locating.rssi import RssiRadioSourceEstimator
from radiosource.types import Reading

logger = logging.getLogger(__name__)


class MixedRadioSourceEstimator(
    MixedReadingsMixin, LaterationSettingsMixin, PathLossSettingsMixin, RadioSourceEstimator
):
    """
    Estimates a radio source from readings carrying a distance, an RSSI
    value, or both.

    Minimum number of readings (2D; add 1 in 3D):
        | Estimated                  | min_readings |
        |----------------------------|--------------|
        | position                   | 3            |
        | position + power or n      | 4            |
        | position + power + n       | 5            |

    At least ``min_ranging_readings`` readings must carry a distance for the
    position to be laterated; otherwise ``min_rssi_readings`` readings
    carrying an RSSI value are needed to fit the position with the
    path-loss model. Power and path-loss exponent always need
    ``min_rssi_readings`` RSSI readings.

    Example:
        >>> estimator = MixedRadioSourceEstimator(readings, path_loss_estimation_enabled=True)
        >>> located = estimator.estimate()
        >>> located.position, located.path_loss_exponent
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
    def is_ready(self) -> bool:
        return super().is_ready and self._has_pass_readings()

    def _estimate(self) -> None:
        ranging = None
        position = self._initial_position
        if self._runs_ranging_pass():
            ranging = RangingRadioSourceEstimator(
                [r.ranging_only() for r in self._readings if r.has_ranging],
                dims=self._dims,
                initial_position=self._initial_position,
                use_reading_position_covariances=self._use_reading_position_covariances,
                homogeneous_linear_solver_used=self._homogeneous_linear_solver_used,
            )
            ranging.estimate()
            position = ranging.estimated_position

        rssi = None
        if self._runs_rssi_pass():
            rssi = RssiRadioSourceEstimator(
                [r.rssi_only() for r in self._readings if r.has_rssi],
                dims=self._dims,
                initial_position=position,
                initial_transmitted_power_dbm=self._initial_transmitted_power_dbm,
                initial_path_loss_exponent=self._initial_path_loss_exponent,
                position_estimation_enabled=ranging is None,
                transmitted_power_estimation_enabled=self._transmitted_power_estimation_enabled,
                path_loss_estimation_enabled=self._path_loss_estimation_enabled,
                use_reading_position_covariances=self._use_reading_position_covariances,
            )
            rssi.estimate()

        logger.debug(
            "Mixed estimation from %d ranging and %d rssi readings (ranging pass: %s, rssi pass: %s)",
            self.num_ranging_readings,
            self.num_rssi_readings,
            ranging is not None,
            rssi is not None,
        )
        self._publish_passes(ranging, rssi)
