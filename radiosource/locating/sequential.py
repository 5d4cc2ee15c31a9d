"""
Sequential robust estimation from mixed ranging and RSSI readings.

The position of the radio source is first estimated robustly from the
readings carrying a distance. Transmitted power and path-loss exponent are
then estimated robustly from the readings carrying an RSSI value, with the
source anchored at the position found by the first pass.

When too few readings carry a distance to laterate, the position is
estimated by the RSSI pass instead.
"""

import logging
import warnings
from typing import List, Optional, Sequence, Union

import numpy as np

from radiosource.errors import RobustEstimationError
from radiosource.locating.base import (
    DEFAULT_PATH_LOSS_ESTIMATION_ENABLED,
    DEFAULT_PATH_LOSS_EXPONENT,
    DEFAULT_TRANSMITTED_POWER_ESTIMATION_ENABLED,
    DEFAULT_USE_HOMOGENEOUS_LINEAR_SOLVER,
    DEFAULT_USE_READING_POSITION_COVARIANCES,
    MixedReadingsMixin,
    PathLossSettingsMixin,
    RadioSourceEstimator,
    RadioSourceEstimatorListener,
)
from radiosource.locating.robust import (
    DEFAULT_KEEP_COVARIANCE,
    DEFAULT_REFINE_RESULT,
    RobustRangingRadioSourceEstimator,
    RobustRssiRadioSourceEstimator,
    Seed,
    _check_confidence,
    _check_max_iterations,
    _check_progress_delta,
    _positive,
)
from radiosource.robust import (
    DEFAULT_CONFIDENCE,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_PROGRESS_DELTA,
    DEFAULT_ROBUST_METHOD,
    InliersData,
    RobustMethod,
)
from radiosource.types import Reading

logger = logging.getLogger(__name__)


class _PassListener(RadioSourceEstimatorListener):
    """Forwards the callbacks of one inner pass to the sequential estimator."""

    def __init__(self, outer: "SequentialRobustRadioSourceEstimator"):
        self.outer = outer
        self.iteration_offset = 0
        self.iterations = 0
        self.progress_start = 0.0
        self.progress_scale = 1.0

    def start_pass(self, progress_start: float, progress_scale: float) -> None:
        self.iteration_offset = self.iterations
        self.progress_start = progress_start
        self.progress_scale = progress_scale

    def on_estimate_next_iteration(self, estimator, iteration: int) -> None:
        self.iterations = self.iteration_offset + iteration
        self.outer._notify_iteration(self.iterations)

    def on_estimate_progress_change(self, estimator, progress: float) -> None:
        self.outer._notify_progress(self.progress_start + self.progress_scale * progress)


class SequentialRobustRadioSourceEstimator(
    MixedReadingsMixin, PathLossSettingsMixin, RadioSourceEstimator
):
    """
    Robust radio source estimator running a ranging pass and an RSSI pass.

    Each pass has its own robust method, threshold, confidence, maximum
    number of iterations and preliminary subset size. Refinement, covariance
    keeping, the seed and the initial values are shared.

    Minimum number of readings (2D; add 1 in 3D):
        | Estimated                  | min_readings |
        |----------------------------|--------------|
        | position                   | 3            |
        | position + power or n      | 4            |
        | position + power + n       | 5            |

    The listener sees a single estimation: start and end fire once, the
    iteration count runs across both passes and progress is split between
    them.

    Example:
        >>> estimator = SequentialRobustRadioSourceEstimator(
        ...     readings, ranging_robust_method="lmeds", rssi_robust_method="ransac"
        ... )
        >>> located = estimator.estimate()
        >>> located.position, located.transmitted_power_dbm
    """

    _failure_error = RobustEstimationError

    def __init__(
        self,
        readings: Optional[Sequence[Reading]] = None,
        quality_scores: Optional[np.ndarray] = None,
        dims: int = 2,
        initial_position: Optional[np.ndarray] = None,
        initial_transmitted_power_dbm: Optional[float] = None,
        initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
        transmitted_power_estimation_enabled: bool = DEFAULT_TRANSMITTED_POWER_ESTIMATION_ENABLED,
        path_loss_estimation_enabled: bool = DEFAULT_PATH_LOSS_ESTIMATION_ENABLED,
        ranging_robust_method: Union[RobustMethod, str] = DEFAULT_ROBUST_METHOD,
        rssi_robust_method: Union[RobustMethod, str] = DEFAULT_ROBUST_METHOD,
        ranging_threshold: Optional[float] = None,
        rssi_threshold: Optional[float] = None,
        ranging_confidence: float = DEFAULT_CONFIDENCE,
        rssi_confidence: float = DEFAULT_CONFIDENCE,
        ranging_max_iterations: int = DEFAULT_MAX_ITERATIONS,
        rssi_max_iterations: int = DEFAULT_MAX_ITERATIONS,
        ranging_preliminary_subset_size: Optional[int] = None,
        rssi_preliminary_subset_size: Optional[int] = None,
        refine_result: bool = DEFAULT_REFINE_RESULT,
        keep_covariance: bool = DEFAULT_KEEP_COVARIANCE,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        use_reading_position_covariances: bool = DEFAULT_USE_READING_POSITION_COVARIANCES,
        homogeneous_ranging_linear_solver_used: bool = DEFAULT_USE_HOMOGENEOUS_LINEAR_SOLVER,
        listener: Optional[RadioSourceEstimatorListener] = None,
        seed: Seed = None,
    ):
        super().__init__(dims, initial_position, listener, use_reading_position_covariances)
        self._init_path_loss(
            initial_transmitted_power_dbm,
            initial_path_loss_exponent,
            transmitted_power_estimation_enabled,
            path_loss_estimation_enabled,
        )
        self._ranging_robust_method = RobustMethod.coerce(ranging_robust_method)
        self._rssi_robust_method = RobustMethod.coerce(rssi_robust_method)
        self._ranging_threshold = _optional_positive("ranging_threshold", ranging_threshold)
        self._rssi_threshold = _optional_positive("rssi_threshold", rssi_threshold)
        self._ranging_confidence = _check_confidence(ranging_confidence)
        self._rssi_confidence = _check_confidence(rssi_confidence)
        self._ranging_max_iterations = _check_max_iterations(ranging_max_iterations)
        self._rssi_max_iterations = _check_max_iterations(rssi_max_iterations)
        self._refine_result = bool(refine_result)
        self._keep_covariance = bool(keep_covariance)
        self._progress_delta = _check_progress_delta(progress_delta)
        self._homogeneous_ranging_linear_solver_used = bool(homogeneous_ranging_linear_solver_used)
        self._seed = seed

        self._quality_scores: Optional[np.ndarray] = None
        self._ranging_preliminary_subset_size: Optional[int] = None
        self._rssi_preliminary_subset_size: Optional[int] = None
        self._inliers_data: Optional[InliersData] = None

        if readings is not None:
            self.readings = readings
        if quality_scores is not None:
            self.quality_scores = quality_scores
        if ranging_preliminary_subset_size is not None:
            self.ranging_preliminary_subset_size = ranging_preliminary_subset_size
        if rssi_preliminary_subset_size is not None:
            self.rssi_preliminary_subset_size = rssi_preliminary_subset_size

    # ------------------------------------------------------------------
    # Reading requirements
    # ------------------------------------------------------------------
    def _uses_quality_scores(self) -> bool:
        return (
            self._runs_ranging_pass() and self._ranging_robust_method.uses_quality_scores
        ) or (self._runs_rssi_pass() and self._rssi_robust_method.uses_quality_scores)

    @property
    def is_ready(self) -> bool:
        if not (super().is_ready and self._has_pass_readings()):
            return False

        if (
            self._runs_ranging_pass()
            and self.ranging_preliminary_subset_size > self.num_ranging_readings
        ):
            return False
        if self._runs_rssi_pass() and self.rssi_preliminary_subset_size > self.num_rssi_readings:
            return False

        if self._uses_quality_scores():
            return (
                self._quality_scores is not None
                and len(self._quality_scores) == len(self._readings)
            )
        return True

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    @property
    def quality_scores(self) -> Optional[np.ndarray]:
        """Quality of each reading, split between passes by measurement."""
        return self._quality_scores

    @quality_scores.setter
    def quality_scores(self, quality_scores: Optional[np.ndarray]) -> None:
        self._check_lock()
        if not (
            self._ranging_robust_method.uses_quality_scores
            or self._rssi_robust_method.uses_quality_scores
        ):
            warnings.warn(
                "neither robust method uses quality scores; they are ignored",
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
    def ranging_robust_method(self) -> RobustMethod:
        return self._ranging_robust_method

    @ranging_robust_method.setter
    def ranging_robust_method(self, method: Union[RobustMethod, str]) -> None:
        self._check_lock()
        self._ranging_robust_method = RobustMethod.coerce(method)

    @property
    def rssi_robust_method(self) -> RobustMethod:
        return self._rssi_robust_method

    @rssi_robust_method.setter
    def rssi_robust_method(self, method: Union[RobustMethod, str]) -> None:
        self._check_lock()
        self._rssi_robust_method = RobustMethod.coerce(method)

    @property
    def ranging_threshold(self) -> Optional[float]:
        """Threshold of the ranging pass, or None for the method default."""
        return self._ranging_threshold

    @ranging_threshold.setter
    def ranging_threshold(self, value: Optional[float]) -> None:
        self._check_lock()
        self._ranging_threshold = _optional_positive("ranging_threshold", value)

    @property
    def rssi_threshold(self) -> Optional[float]:
        """Threshold of the RSSI pass, or None for the method default."""
        return self._rssi_threshold

    @rssi_threshold.setter
    def rssi_threshold(self, value: Optional[float]) -> None:
        self._check_lock()
        self._rssi_threshold = _optional_positive("rssi_threshold", value)

    @property
    def ranging_confidence(self) -> float:
        return self._ranging_confidence

    @ranging_confidence.setter
    def ranging_confidence(self, value: float) -> None:
        self._check_lock()
        self._ranging_confidence = _check_confidence(value)

    @property
    def rssi_confidence(self) -> float:
        return self._rssi_confidence

    @rssi_confidence.setter
    def rssi_confidence(self, value: float) -> None:
        self._check_lock()
        self._rssi_confidence = _check_confidence(value)

    @property
    def ranging_max_iterations(self) -> int:
        return self._ranging_max_iterations

    @ranging_max_iterations.setter
    def ranging_max_iterations(self, value: int) -> None:
        self._check_lock()
        self._ranging_max_iterations = _check_max_iterations(value)

    @property
    def rssi_max_iterations(self) -> int:
        return self._rssi_max_iterations

    @rssi_max_iterations.setter
    def rssi_max_iterations(self, value: int) -> None:
        self._check_lock()
        self._rssi_max_iterations = _check_max_iterations(value)

    @property
    def ranging_preliminary_subset_size(self) -> int:
        if self._ranging_preliminary_subset_size is None:
            return self.min_ranging_readings
        return self._ranging_preliminary_subset_size

    @ranging_preliminary_subset_size.setter
    def ranging_preliminary_subset_size(self, size: int) -> None:
        self._check_lock()
        if size < self.min_ranging_readings:
            raise ValueError(
                f"ranging_preliminary_subset_size must be at least "
                f"{self.min_ranging_readings}, got {size}"
            )
        self._ranging_preliminary_subset_size = int(size)

    @property
    def rssi_preliminary_subset_size(self) -> int:
        if self._rssi_preliminary_subset_size is None:
            return self.min_rssi_readings
        return self._rssi_preliminary_subset_size

    @rssi_preliminary_subset_size.setter
    def rssi_preliminary_subset_size(self, size: int) -> None:
        self._check_lock()
        if size < self.min_rssi_readings:
            raise ValueError(
                f"rssi_preliminary_subset_size must be at least "
                f"{self.min_rssi_readings}, got {size}"
            )
        self._rssi_preliminary_subset_size = int(size)

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
    def progress_delta(self) -> float:
        return self._progress_delta

    @progress_delta.setter
    def progress_delta(self, value: float) -> None:
        self._check_lock()
        self._progress_delta = _check_progress_delta(value)

    @property
    def homogeneous_ranging_linear_solver_used(self) -> bool:
        return self._homogeneous_ranging_linear_solver_used

    @homogeneous_ranging_linear_solver_used.setter
    def homogeneous_ranging_linear_solver_used(self, value: bool) -> None:
        self._check_lock()
        self._homogeneous_ranging_linear_solver_used = bool(value)

    @property
    def seed(self) -> Seed:
        return self._seed

    @seed.setter
    def seed(self, value: Seed) -> None:
        self._check_lock()
        self._seed = value

    @property
    def inliers_data(self) -> Optional[InliersData]:
        """Inliers of the last pass of the last successful estimation."""
        return self._inliers_data

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------
    def _pass_settings(
        self,
        method: RobustMethod,
        threshold: Optional[float],
        confidence: float,
        max_iterations: int,
        listener: _PassListener,
    ) -> dict:
        settings = dict(
            method=method,
            dims=self._dims,
            listener=listener,
            confidence=confidence,
            max_iterations=max_iterations,
            progress_delta=min(2.0 * self._progress_delta, 1.0),
            refine_result=self._refine_result,
            keep_covariance=self._keep_covariance,
            use_reading_position_covariances=self._use_reading_position_covariances,
            seed=self._seed,
        )
        if threshold is not None:
            settings["stop_threshold" if method.uses_stop_threshold else "threshold"] = threshold
        return settings

    def _pass_quality_scores(self, method: RobustMethod, mask: List[bool]) -> Optional[np.ndarray]:
        if not method.uses_quality_scores:
            return None
        return self._quality_scores[np.array(mask)]

    def _estimate(self) -> None:
        forwarder = _PassListener(self)
        runs_ranging = self._runs_ranging_pass()
        runs_rssi = self._runs_rssi_pass()
        progress_scale = 0.5 if runs_ranging and runs_rssi else 1.0

        position = self._initial_position
        ranging_estimator = None
        last_estimator = None

        if runs_ranging:
            mask = [r.has_ranging for r in self._readings]
            ranging_estimator = RobustRangingRadioSourceEstimator(
                [r.ranging_only() for r in self._readings if r.has_ranging],
                quality_scores=self._pass_quality_scores(self._ranging_robust_method, mask),
                preliminary_subset_size=self._ranging_preliminary_subset_size,
                homogeneous_linear_solver_used=self._homogeneous_ranging_linear_solver_used,
                initial_position=self._initial_position,
                **self._pass_settings(
                    self._ranging_robust_method,
                    self._ranging_threshold,
                    self._ranging_confidence,
                    self._ranging_max_iterations,
                    forwarder,
                ),
            )
            forwarder.start_pass(0.0, progress_scale)
            ranging_estimator.estimate()
            position = ranging_estimator.estimated_position
            last_estimator = ranging_estimator

        rssi_estimator = None
        if runs_rssi:
            mask = [r.has_rssi for r in self._readings]
            rssi_estimator = RobustRssiRadioSourceEstimator(
                [r.rssi_only() for r in self._readings if r.has_rssi],
                quality_scores=self._pass_quality_scores(self._rssi_robust_method, mask),
                preliminary_subset_size=self._rssi_preliminary_subset_size,
                initial_position=position,
                initial_transmitted_power_dbm=self._initial_transmitted_power_dbm,
                initial_path_loss_exponent=self._initial_path_loss_exponent,
                position_estimation_enabled=not runs_ranging,
                transmitted_power_estimation_enabled=self._transmitted_power_estimation_enabled,
                path_loss_estimation_enabled=self._path_loss_estimation_enabled,
                **self._pass_settings(
                    self._rssi_robust_method,
                    self._rssi_threshold,
                    self._rssi_confidence,
                    self._rssi_max_iterations,
                    forwarder,
                ),
            )
            forwarder.start_pass(1.0 - progress_scale, progress_scale)
            rssi_estimator.estimate()
            last_estimator = rssi_estimator

        logger.debug(
            "Sequential estimation finished after %d iterations (ranging pass: %s, rssi pass: %s)",
            forwarder.iterations,
            runs_ranging,
            runs_rssi,
        )
        self._inliers_data = last_estimator.inliers_data
        self._publish_passes(ranging_estimator, rssi_estimator)


def _optional_positive(name: str, value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return _positive(name, value)
