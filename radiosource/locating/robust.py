"""
Robust radio source estimators.

Readings taken in real environments contain outliers: multipath ranges,
RSSI values from shadowed positions, wrongly located sensors. The
estimators in this module run the robust sampling engine over the
readings to find a solution supported by the inliers only, and optionally
refine that solution by nonlinear least squares over the inliers.

Three kinds of estimator are provided:

    | Estimator                | Readings        | Estimates                |
    |--------------------------|-----------------|--------------------------|
    | RobustRanging...         | distance        | position                 |
    | RobustRssi...            | rssi            | position, power, n       |
    | RobustRangingAndRssi...  | distance + rssi | position, power, n       |

and each of them can use any RobustMethod.
"""

import logging
import warnings
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from radiosource.errors import RadioSourceError, RobustEstimationError
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
    RadioSourceSolution,
    block_covariance,
    check_rssi_reading,
    ranging_arrays,
    rssi_arrays,
)
from radiosource.rf.lateration import linear_power_pathloss, nonlinear_lateration
from radiosource.rf.measurement_models import expected_rssi, ranging_residuals
from radiosource.rf.rssi_fitting import fit_rssi_model
from radiosource.robust import (
    DEFAULT_CONFIDENCE,
    DEFAULT_INLIER_FACTOR,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_PROGRESS_DELTA,
    DEFAULT_ROBUST_METHOD,
    DEFAULT_STOP_THRESHOLD,
    DEFAULT_THRESHOLD,
    InliersData,
    RobustMethod,
    RobustSampler,
)
from radiosource.types import CovarianceStatus, Reading

logger = logging.getLogger(__name__)

DEFAULT_REFINE_RESULT = True
DEFAULT_KEEP_COVARIANCE = True

Seed = Union[None, int, np.random.Generator]


class RobustRadioSourceEstimator(RadioSourceEstimator):
    """
    Base class of robust radio source estimators.

    Subclasses provide the per-kind model through four hooks:
        _prepare():                 stack the readings into arrays
        _solve_subset(indices):     candidate solutions from a subset
        _residuals(solution):       residual of every reading
        _refine(solution, inliers): nonlinear refinement over the inliers

    Settings only used by some methods are still accepted by all of them:
    ``threshold`` applies to RANSAC, MSAC and PROSAC, ``stop_threshold``
    and ``inlier_factor`` to LMedS and PROMedS, and quality scores to
    PROSAC and PROMedS only.
    """

    _failure_error = RobustEstimationError

    def __init__(
        self,
        method: Union[RobustMethod, str] = DEFAULT_ROBUST_METHOD,
        dims: int = 2,
        initial_position: Optional[np.ndarray] = None,
        listener: Optional[RadioSourceEstimatorListener] = None,
        threshold: float = DEFAULT_THRESHOLD,
        stop_threshold: float = DEFAULT_STOP_THRESHOLD,
        inlier_factor: float = DEFAULT_INLIER_FACTOR,
        confidence: float = DEFAULT_CONFIDENCE,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        refine_result: bool = DEFAULT_REFINE_RESULT,
        keep_covariance: bool = DEFAULT_KEEP_COVARIANCE,
        compute_and_keep_inliers: bool = False,
        compute_and_keep_residuals: bool = False,
        use_reading_position_covariances: bool = DEFAULT_USE_READING_POSITION_COVARIANCES,
        seed: Seed = None,
    ):
        super().__init__(dims, initial_position, listener, use_reading_position_covariances)
        self._method = RobustMethod.coerce(method)
        self._threshold = _positive("threshold", threshold)
        self._stop_threshold = _positive("stop_threshold", stop_threshold)
        self._inlier_factor = _positive("inlier_factor", inlier_factor)
        self._confidence = _check_confidence(confidence)
        self._max_iterations = _check_max_iterations(max_iterations)
        self._progress_delta = _check_progress_delta(progress_delta)
        self._refine_result = bool(refine_result)
        self._keep_covariance = bool(keep_covariance)
        self._compute_and_keep_inliers = bool(compute_and_keep_inliers)
        self._compute_and_keep_residuals = bool(compute_and_keep_residuals)
        self._seed = seed

        self._quality_scores: Optional[np.ndarray] = None
        self._preliminary_subset_size: Optional[int] = None
        self._inliers_data: Optional[InliersData] = None

    def _configure(
        self,
        readings: Optional[Sequence[Reading]],
        quality_scores: Optional[np.ndarray],
        preliminary_subset_size: Optional[int],
    ) -> None:
        if readings is not None:
            self.readings = readings
        if quality_scores is not None:
            self.quality_scores = quality_scores
        if preliminary_subset_size is not None:
            self.preliminary_subset_size = preliminary_subset_size

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    @property
    def method(self) -> RobustMethod:
        return self._method

    @property
    def quality_scores(self) -> Optional[np.ndarray]:
        """Quality of each reading (higher is better), or None."""
        return self._quality_scores

    @quality_scores.setter
    def quality_scores(self, quality_scores: Optional[np.ndarray]) -> None:
        self._check_lock()
        if not self._method.uses_quality_scores:
            warnings.warn(
                f"{self._method.name} does not use quality scores; they are ignored",
                UserWarning,
                stacklevel=2,
            )
            return
        if quality_scores is None:
            raise ValueError("quality_scores must not be None")
        quality_scores = np.array(quality_scores, dtype=float)
        if quality_scores.ndim != 1 or len(quality_scores) < self.min_readings:
            raise ValueError(
                f"At least {self.min_readings} quality scores are required, "
                f"got shape {quality_scores.shape}"
            )
        self._quality_scores = quality_scores

    @property
    def preliminary_subset_size(self) -> int:
        """Number of readings used to compute each preliminary solution."""
        if self._preliminary_subset_size is None:
            return self.min_readings
        return self._preliminary_subset_size

    @preliminary_subset_size.setter
    def preliminary_subset_size(self, size: int) -> None:
        self._check_lock()
        if size < self.min_readings:
            raise ValueError(
                f"preliminary_subset_size must be at least {self.min_readings}, got {size}"
            )
        self._preliminary_subset_size = int(size)

    @property
    def threshold(self) -> float:
        return self._threshold

    @threshold.setter
    def threshold(self, value: float) -> None:
        self._check_lock()
        self._threshold = _positive("threshold", value)

    @property
    def stop_threshold(self) -> float:
        return self._stop_threshold

    @stop_threshold.setter
    def stop_threshold(self, value: float) -> None:
        self._check_lock()
        self._stop_threshold = _positive("stop_threshold", value)

    @property
    def inlier_factor(self) -> float:
        return self._inlier_factor

    @inlier_factor.setter
    def inlier_factor(self, value: float) -> None:
        self._check_lock()
        self._inlier_factor = _positive("inlier_factor", value)

    @property
    def confidence(self) -> float:
        return self._confidence

    @confidence.setter
    def confidence(self, value: float) -> None:
        self._check_lock()
        self._confidence = _check_confidence(value)

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    @max_iterations.setter
    def max_iterations(self, value: int) -> None:
        self._check_lock()
        self._max_iterations = _check_max_iterations(value)

    @property
    def progress_delta(self) -> float:
        return self._progress_delta

    @progress_delta.setter
    def progress_delta(self, value: float) -> None:
        self._check_lock()
        self._progress_delta = _check_progress_delta(value)

    @property
    def refine_result(self) -> bool:
        return self._refine_result

    @refine_result.setter
    def refine_result(self, value: bool) -> None:
        self._check_lock()
        self._refine_result = bool(value)

    @property
    def keep_covariance(self) -> bool:
        return self._keep_covariance

    @keep_covariance.setter
    def keep_covariance(self, value: bool) -> None:
        self._check_lock()
        self._keep_covariance = bool(value)

    @property
    def compute_and_keep_inliers(self) -> bool:
        return self._compute_and_keep_inliers

    @compute_and_keep_inliers.setter
    def compute_and_keep_inliers(self, value: bool) -> None:
        self._check_lock()
        self._compute_and_keep_inliers = bool(value)

    @property
    def compute_and_keep_residuals(self) -> bool:
        return self._compute_and_keep_residuals

    @compute_and_keep_residuals.setter
    def compute_and_keep_residuals(self, value: bool) -> None:
        self._check_lock()
        self._compute_and_keep_residuals = bool(value)

    @property
    def seed(self) -> Seed:
        return self._seed

    @seed.setter
    def seed(self, value: Seed) -> None:
        self._check_lock()
        self._seed = value

    @property
    def is_ready(self) -> bool:
        if not super().is_ready:
            return False
        if self.preliminary_subset_size > len(self._readings):
            return False
        if self._method.uses_quality_scores:
            return (
                self._quality_scores is not None
                and len(self._quality_scores) == len(self._readings)
            )
        return True

    @property
    def inliers_data(self) -> Optional[InliersData]:
        """Inliers of the last successful estimation."""
        return self._inliers_data

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------
    def _result_layout(self) -> Tuple[bool, bool, bool]:
        return (True, False, False)

    def _prepare(self) -> None:
        """Stack the readings into arrays before sampling."""

    def _solve_subset(self, indices: np.ndarray) -> List[RadioSourceSolution]:
        raise NotImplementedError

    def _residuals(self, solution: RadioSourceSolution) -> np.ndarray:
        raise NotImplementedError

    def _refine(
        self, solution: RadioSourceSolution, inliers: np.ndarray
    ) -> Tuple[RadioSourceSolution, Optional[np.ndarray], CovarianceStatus]:
        raise NotImplementedError

    def _estimate(self) -> None:
        self._prepare()

        refine = self._refine_result
        sampler = RobustSampler(
            num_samples=len(self._readings),
            subset_size=max(self.preliminary_subset_size, self.min_readings),
            preliminary_solutions=self._solve_subset,
            residuals=self._residuals,
            method=self._method,
            threshold=self._threshold,
            stop_threshold=self._stop_threshold,
            inlier_factor=self._inlier_factor,
            confidence=self._confidence,
            max_iterations=self._max_iterations,
            progress_delta=self._progress_delta,
            quality_scores=self._quality_scores,
            keep_inliers=self._compute_and_keep_inliers or refine,
            keep_residuals=self._compute_and_keep_residuals or refine,
            rng=np.random.default_rng(self._seed),
            on_iteration=self._notify_iteration,
            on_progress=self._notify_progress,
        )
        best, inliers_data = sampler.run()

        if refine:
            solution, covariance, status = self._attempt_refine(best, inliers_data.inliers)
        else:
            solution, covariance, status = best, None, CovarianceStatus.NOT_REQUESTED

        self._inliers_data = inliers_data
        self._set_result(
            solution.position,
            solution.transmitted_power_dbm,
            solution.path_loss_exponent,
            covariance=covariance,
            status=status,
            layout=self._result_layout(),
        )

    def _attempt_refine(
        self, solution: RadioSourceSolution, inliers: np.ndarray
    ) -> Tuple[RadioSourceSolution, Optional[np.ndarray], CovarianceStatus]:
        try:
            refined, covariance, status = self._refine(solution, inliers)
        except (RadioSourceError, ValueError, np.linalg.LinAlgError) as e:
            logger.warning("Refinement failed, keeping preliminary solution: %s", e)
            return solution, None, CovarianceStatus.UNAVAILABLE

        if not self._keep_covariance:
            return refined, None, CovarianceStatus.NOT_REQUESTED
        return refined, covariance, status


class RobustRangingRadioSourceEstimator(LaterationSettingsMixin, RobustRadioSourceEstimator):
    """
    Robustly estimates the position of a radio source from ranging readings.

    Each preliminary solution comes from linear lateration over a subset of
    dims + 1 readings, or from nonlinear lateration started at the initial
    position when one is set. The residual of a reading is | ‖x - pᵢ‖ - dᵢ |.

    Example:
        >>> estimator = RobustRangingRadioSourceEstimator(
        ...     readings, method=RobustMethod.LMEDS, refine_result=False
        ... )
        >>> located = estimator.estimate()
    """

    def __init__(
        self,
        readings: Optional[Sequence[Reading]] = None,
        method: Union[RobustMethod, str] = DEFAULT_ROBUST_METHOD,
        quality_scores: Optional[np.ndarray] = None,
        preliminary_subset_size: Optional[int] = None,
        homogeneous_linear_solver_used: bool = DEFAULT_USE_HOMOGENEOUS_LINEAR_SOLVER,
        **kwargs,
    ):
        super().__init__(method, **kwargs)
        self._init_lateration(homogeneous_linear_solver_used)
        self._configure(readings, quality_scores, preliminary_subset_size)

    @property
    def min_readings(self) -> int:
        return self._dims + 1

    def _check_reading(self, reading: Reading) -> None:
        if not reading.has_ranging:
            raise ValueError("reading has no distance")

    def _prepare(self) -> None:
        self._positions, self._distances, self._distance_stds = ranging_arrays(
            self._readings, self._use_reading_position_covariances
        )

    def _solve_subset(self, indices: np.ndarray) -> List[RadioSourceSolution]:
        positions = self._positions[indices]
        distances = self._distances[indices]

        if self._initial_position is None:
            return [RadioSourceSolution(self._laterate(positions, distances))]

        result = nonlinear_lateration(
            positions,
            distances,
            self._initial_position,
            self._distance_stds[indices],
            return_covariance=False,
        )
        return [RadioSourceSolution(result.x)]

    def _residuals(self, solution: RadioSourceSolution) -> np.ndarray:
        return ranging_residuals(self._positions, self._distances, solution.position)

    def _refine(self, solution, inliers):
        result = nonlinear_lateration(
            self._positions[inliers],
            self._distances[inliers],
            solution.position,
            self._distance_stds[inliers],
            return_covariance=self._keep_covariance,
        )
        return RadioSourceSolution(result.x), result.covariance, result.covariance_status


class _RobustPathLossEstimator(PathLossSettingsMixin, RobustRadioSourceEstimator):
    """Shared settings and residuals of robust estimators fitting RSSI."""

    def _init_rssi(
        self,
        initial_transmitted_power_dbm: Optional[float],
        initial_path_loss_exponent: float,
        transmitted_power_estimation_enabled: bool,
        path_loss_estimation_enabled: bool,
    ) -> None:
        self._init_path_loss(
            initial_transmitted_power_dbm,
            initial_path_loss_exponent,
            transmitted_power_estimation_enabled,
            path_loss_estimation_enabled,
        )

    def _prepare(self) -> None:
        (
            self._positions,
            self._rssi,
            self._rssi_stds,
            self._frequencies,
            self._position_covariances,
        ) = rssi_arrays(self._readings)

    def _residuals(self, solution: RadioSourceSolution) -> np.ndarray:
        predicted = expected_rssi(
            self._positions,
            solution.position,
            solution.transmitted_power_dbm,
            solution.path_loss_exponent,
            self._frequencies,
        )
        return np.abs(predicted - self._rssi)

    def _fit_power(
        self,
        solution: RadioSourceSolution,
        mask: np.ndarray,
        estimate_position: bool,
        return_covariance: bool,
    ):
        covariances = None
        if self._use_reading_position_covariances:
            covariances = [c for c, keep in zip(self._position_covariances, mask) if keep]
        return fit_rssi_model(
            self._positions[mask],
            self._rssi[mask],
            self._frequencies[mask],
            solution.position,
            solution.transmitted_power_dbm,
            solution.path_loss_exponent,
            estimate_position=estimate_position,
            estimate_transmitted_power=self._transmitted_power_estimation_enabled,
            estimate_path_loss=self._path_loss_estimation_enabled,
            rssi_stds=self._rssi_stds[mask],
            position_covariances=covariances,
            return_covariance=return_covariance,
        )


class RobustRssiRadioSourceEstimator(_RobustPathLossEstimator):
    """
    Robustly estimates position, transmitted power and path-loss exponent
    from RSSI readings.

    Preliminary solutions are Levenberg-Marquardt fits over each subset,
    started from the initial values (the subset centroid and mean RSSI when
    not set). The residual of a reading is |Pr(pᵢ) - Prᵢ| in dB.

    Minimum number of readings:
        (dims if position) + (1 if power) + (1 if path-loss) + 1
    """

    def __init__(
        self,
        readings: Optional[Sequence[Reading]] = None,
        method: Union[RobustMethod, str] = DEFAULT_ROBUST_METHOD,
        quality_scores: Optional[np.ndarray] = None,
        preliminary_subset_size: Optional[int] = None,
        initial_transmitted_power_dbm: Optional[float] = None,
        initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
        position_estimation_enabled: bool = True,
        transmitted_power_estimation_enabled: bool = DEFAULT_TRANSMITTED_POWER_ESTIMATION_ENABLED,
        path_loss_estimation_enabled: bool = DEFAULT_PATH_LOSS_ESTIMATION_ENABLED,
        **kwargs,
    ):
        super().__init__(method, **kwargs)
        self._init_rssi(
            initial_transmitted_power_dbm,
            initial_path_loss_exponent,
            transmitted_power_estimation_enabled,
            path_loss_estimation_enabled,
        )
        self._position_estimation_enabled = bool(position_estimation_enabled)
        self._configure(readings, quality_scores, preliminary_subset_size)

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
        if not (self._position_estimation_enabled or self._num_power_parameters):
            return False
        if not self._position_estimation_enabled and self._initial_position is None:
            return False
        if (
            not self._transmitted_power_estimation_enabled
            and self._initial_transmitted_power_dbm is None
        ):
            return False
        return super().is_ready

    def _check_reading(self, reading: Reading) -> None:
        check_rssi_reading(reading)

    def _result_layout(self) -> Tuple[bool, bool, bool]:
        return (
            self._position_estimation_enabled,
            self._transmitted_power_estimation_enabled,
            self._path_loss_estimation_enabled,
        )

    def _solve_subset(self, indices: np.ndarray) -> List[RadioSourceSolution]:
        mask = np.zeros(len(self._readings), dtype=bool)
        mask[indices] = True

        position = self._initial_position
        if position is None:
            position = self._positions[mask].mean(axis=0)
        power = self._initial_transmitted_power_dbm
        if power is None:
            power = float(self._rssi[mask].mean())

        start = RadioSourceSolution(position, power, self._initial_path_loss_exponent)
        fit = self._fit_power(
            start, mask, self._position_estimation_enabled, return_covariance=False
        )
        return [RadioSourceSolution(fit.position, fit.transmitted_power_dbm, fit.path_loss_exponent)]

    def _refine(self, solution, inliers):
        fit = self._fit_power(
            solution, inliers, self._position_estimation_enabled, self._keep_covariance
        )
        refined = RadioSourceSolution(fit.position, fit.transmitted_power_dbm, fit.path_loss_exponent)
        return refined, fit.covariance, fit.covariance_status


class RobustRangingAndRssiRadioSourceEstimator(LaterationSettingsMixin, _RobustPathLossEstimator):
    """
    Robustly estimates position, transmitted power and path-loss exponent
    from readings carrying both a distance and an RSSI value.

    Each preliminary solution laterates the position from the subset
    distances and then solves transmitted power and path-loss exponent in
    closed form. Candidates are scored on their RSSI residuals.

    Minimum number of readings:
        dims + (1 if power) + (1 if path-loss) + 1
    """

    def __init__(
        self,
        readings: Optional[Sequence[Reading]] = None,
        method: Union[RobustMethod, str] = DEFAULT_ROBUST_METHOD,
        quality_scores: Optional[np.ndarray] = None,
        preliminary_subset_size: Optional[int] = None,
        initial_transmitted_power_dbm: Optional[float] = None,
        initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
        transmitted_power_estimation_enabled: bool = DEFAULT_TRANSMITTED_POWER_ESTIMATION_ENABLED,
        path_loss_estimation_enabled: bool = DEFAULT_PATH_LOSS_ESTIMATION_ENABLED,
        homogeneous_linear_solver_used: bool = DEFAULT_USE_HOMOGENEOUS_LINEAR_SOLVER,
        **kwargs,
    ):
        super().__init__(method, **kwargs)
        self._init_lateration(homogeneous_linear_solver_used)
        self._init_rssi(
            initial_transmitted_power_dbm,
            initial_path_loss_exponent,
            transmitted_power_estimation_enabled,
            path_loss_estimation_enabled,
        )
        self._configure(readings, quality_scores, preliminary_subset_size)

    @property
    def min_readings(self) -> int:
        return self._dims + self._num_power_parameters + 1

    @property
    def is_ready(self) -> bool:
        if (
            not self._transmitted_power_estimation_enabled
            and self._initial_transmitted_power_dbm is None
        ):
            return False
        return super().is_ready

    def _check_reading(self, reading: Reading) -> None:
        if not reading.has_ranging:
            raise ValueError("reading has no distance")
        check_rssi_reading(reading)

    def _result_layout(self) -> Tuple[bool, bool, bool]:
        return (
            True,
            self._transmitted_power_estimation_enabled,
            self._path_loss_estimation_enabled,
        )

    def _prepare(self) -> None:
        super()._prepare()
        _, self._distances, self._distance_stds = ranging_arrays(
            self._readings, self._use_reading_position_covariances
        )

    def _solve_subset(self, indices: np.ndarray) -> List[RadioSourceSolution]:
        positions = self._positions[indices]
        position = self._laterate(positions, self._distances[indices])

        power = self._initial_transmitted_power_dbm
        exponent = self._initial_path_loss_exponent
        if self._num_power_parameters:
            power, exponent, _ = linear_power_pathloss(
                positions,
                self._rssi[indices],
                position,
                self._frequencies[indices],
                transmitted_power_dbm=None if self._transmitted_power_estimation_enabled else power,
                path_loss_exponent=None if self._path_loss_estimation_enabled else exponent,
                rssi_stds=self._rssi_stds[indices],
            )
        return [RadioSourceSolution(position, power, exponent)]

    def _refine(self, solution, inliers):
        ranging = nonlinear_lateration(
            self._positions[inliers],
            self._distances[inliers],
            solution.position,
            self._distance_stds[inliers],
            return_covariance=self._keep_covariance,
        )
        refined = RadioSourceSolution(
            ranging.x, solution.transmitted_power_dbm, solution.path_loss_exponent
        )
        if not self._num_power_parameters:
            return refined, ranging.covariance, ranging.covariance_status

        fit = self._fit_power(refined, inliers, estimate_position=False,
                              return_covariance=self._keep_covariance)
        covariance, status = block_covariance(
            ranging.covariance,
            ranging.covariance_status,
            fit.covariance,
            fit.covariance_status,
        )
        refined = RadioSourceSolution(ranging.x, fit.transmitted_power_dbm, fit.path_loss_exponent)
        return refined, covariance, status


_ESTIMATOR_KINDS = {
    "ranging": RobustRangingRadioSourceEstimator,
    "rssi": RobustRssiRadioSourceEstimator,
    "ranging_and_rssi": RobustRangingAndRssiRadioSourceEstimator,
}


def create_robust_estimator(
    kind: str = "ranging",
    method: Union[RobustMethod, str] = DEFAULT_ROBUST_METHOD,
    **kwargs,
) -> RobustRadioSourceEstimator:
    """
    Create a robust radio source estimator.

    Args:
        kind: One of "ranging", "rssi" or "ranging_and_rssi".
        method: Robust method (default PROMedS).
        **kwargs: Additional parameters for the estimator.

    Returns:
        Configured robust estimator instance.

    Example:
        >>> estimator = create_robust_estimator("ranging", "ransac", dims=3)
        >>> estimator.min_readings
        4
    """
    try:
        estimator_class = _ESTIMATOR_KINDS[kind]
    except KeyError:
        raise ValueError(
            f"Unknown estimator kind {kind!r}. Use one of {sorted(_ESTIMATOR_KINDS)}"
        ) from None
    return estimator_class(method=method, **kwargs)


def _positive(name: str, value: float) -> float:
    if value is None or value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return float(value)


def _check_confidence(value: float) -> float:
    if not 0.0 < value < 1.0:
        raise ValueError(f"confidence must be in (0, 1), got {value}")
    return float(value)


def _check_max_iterations(value: int) -> int:
    if value < 1:
        raise ValueError(f"max_iterations must be at least 1, got {value}")
    return int(value)


def _check_progress_delta(value: float) -> float:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"progress_delta must be in [0, 1], got {value}")
    return float(value)
