"""
Ranging radio source estimator.

Locates a radio source from distances measured at known sensor positions:
a linear lateration solver provides a first estimate, which is then
refined by nonlinear least squares when enabled.
"""

from typing import Optional, Sequence

import numpy as np

from radiosource.errors import SolverError
from radiosource.locating.base import (
    DEFAULT_USE_HOMOGENEOUS_LINEAR_SOLVER,
    DEFAULT_USE_READING_POSITION_COVARIANCES,
    LaterationSettingsMixin,
    RadioSourceEstimator,
    RadioSourceEstimatorListener,
    ranging_arrays,
)
from radiosource.rf.lateration import nonlinear_lateration
from radiosource.types import Reading


class RangingRadioSourceEstimator(LaterationSettingsMixin, RadioSourceEstimator):
    """
    Estimates the position of a radio source from ranging readings.

    Requires at least dims + 1 readings with a distance. The covariance of
    the estimated position is only available when the nonlinear solver is
    enabled.

    Example:
        >>> from radiosource.types import Reading, WifiAccessPoint
        >>> ap = WifiAccessPoint("bssid-1", 2.4e9)
        >>> sensors = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0]])
        >>> readings = [Reading(ap, p, distance=np.linalg.norm(p - [3.0, 4.0]))
        ...             for p in sensors]
        >>> estimator = RangingRadioSourceEstimator(readings)
        >>> located = estimator.estimate()
        >>> np.allclose(located.position, [3.0, 4.0])
        True
    """

    def __init__(
        self,
        readings: Optional[Sequence[Reading]] = None,
        dims: int = 2,
        initial_position: Optional[np.ndarray] = None,
        listener: Optional[RadioSourceEstimatorListener] = None,
        use_reading_position_covariances: bool = DEFAULT_USE_READING_POSITION_COVARIANCES,
        homogeneous_linear_solver_used: bool = DEFAULT_USE_HOMOGENEOUS_LINEAR_SOLVER,
        non_linear_solver_enabled: bool = True,
    ):
        super().__init__(dims, initial_position, listener, use_reading_position_covariances)
        self._init_lateration(homogeneous_linear_solver_used)
        self._non_linear_solver_enabled = bool(non_linear_solver_enabled)
        if readings is not None:
            self.readings = readings

    @property
    def min_readings(self) -> int:
        return self._dims + 1

    @property
    def non_linear_solver_enabled(self) -> bool:
        return self._non_linear_solver_enabled

    @non_linear_solver_enabled.setter
    def non_linear_solver_enabled(self, value: bool) -> None:
        self._check_lock()
        self._non_linear_solver_enabled = bool(value)

    def _check_reading(self, reading: Reading) -> None:
        if not reading.has_ranging:
            raise ValueError("reading has no distance")

    def _estimate(self) -> None:
        positions, distances, stds = ranging_arrays(
            self._readings, self._use_reading_position_covariances
        )

        position = self._initial_position
        if position is None or not self._non_linear_solver_enabled:
            position = self._laterate(positions, distances)

        if not self._non_linear_solver_enabled:
            self._set_result(position)
            return

        try:
            result = nonlinear_lateration(positions, distances, position, stds)
        except ValueError as e:
            raise SolverError(f"nonlinear lateration failed: {e}") from e

        self._set_result(
            result.x,
            covariance=result.covariance,
            status=result.covariance_status,
            layout=(True, False, False),
        )
