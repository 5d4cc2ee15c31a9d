"""
Robust sampling engine.

The engine repeatedly draws small subsets of readings, computes candidate
solutions from each subset and scores every candidate against all the
readings. The best scoring candidate, together with its inliers, is the
outcome of the robust estimation.

The five supported methods share the same sampling loop and differ only
in how a candidate is scored and when sampling may stop:

    | Method          | Score                  | Inliers         |
    |-----------------|------------------------|-----------------|
    | RANSAC / PROSAC | count(r < t), maximize | r < t           |
    | MSAC            | Σ min(r², t²), minimize| r < t           |
    | LMedS / PROMedS | median(r²), minimize   | r ≤ robust t    |

The number of iterations adapts to the inlier ratio w of the best
candidate found so far:

    k = log(1 - confidence) / log(1 - wˢ)

PROSAC and PROMedS draw subsets from a pool of readings sorted by quality
score that grows progressively (Chum & Matas, 2005), so good solutions
are usually found within the first few iterations.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np

from radiosource.errors import RobustEstimationError, SolverError
from radiosource.robust.methods import (
    DEFAULT_CONFIDENCE,
    DEFAULT_INLIER_FACTOR,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_PROGRESS_DELTA,
    RobustMethod,
)

logger = logging.getLogger(__name__)

# Consistency constant of the median absolute deviation for Gaussian noise
_MAD_TO_STD = 1.4826

# Probability of drawing an all-inlier subset below which the iteration
# count cannot be estimated
_MIN_SUBSET_PROBABILITY = 1e-15

PreliminarySolver = Callable[[np.ndarray], Sequence[Any]]
ResidualFunction = Callable[[Any], np.ndarray]


@dataclass
class InliersData:
    """Inliers of the best candidate found by a robust estimation.

    Attributes:
        inliers: Boolean mask over the readings, or None when not kept.
        residuals: Residual of every reading, or None when not kept.
        num_inliers: Number of inlier readings.
        threshold: Effective residual threshold used to classify inliers.
        best_score: Score of the best candidate (inlier count for RANSAC
            and PROSAC, truncated cost for MSAC, median squared residual
            for LMedS and PROMedS).
    """

    inliers: Optional[np.ndarray]
    residuals: Optional[np.ndarray]
    num_inliers: int
    threshold: float
    best_score: float

    @property
    def inlier_ratio(self) -> float:
        if self.inliers is None or len(self.inliers) == 0:
            return 0.0
        return self.num_inliers / len(self.inliers)


def required_iterations(
    inlier_ratio: float, subset_size: int, confidence: float, max_iterations: int
) -> int:
    """
    Number of iterations needed to draw an all-inlier subset.

    Args:
        inlier_ratio: Fraction w of inlier readings in [0, 1].
        subset_size: Number of readings s drawn per iteration.
        confidence: Desired probability of drawing an all-inlier subset.
        max_iterations: Upper bound on the returned value.

    Returns:
        min(ceil(log(1 - confidence) / log(1 - wˢ)), max_iterations).

    Example:
        >>> required_iterations(0.5, 3, 0.99, 5000)
        35
        >>> required_iterations(1.0, 3, 0.99, 5000)
        0
    """
    probability = inlier_ratio**subset_size
    if probability >= 1.0:
        return 0
    if probability <= _MIN_SUBSET_PROBABILITY:
        return max_iterations

    n = np.log(1.0 - confidence) / np.log(1.0 - probability)
    return int(min(np.ceil(abs(n)), max_iterations))


# =============================================================================
# Candidate scoring
# =============================================================================
class _ConsensusScoring:
    """RANSAC / PROSAC: number of readings with residual below threshold."""

    higher_is_better = True

    def __init__(self, threshold: float, **kwargs):
        self.threshold = threshold

    def evaluate(self, residuals: np.ndarray) -> Tuple[float, np.ndarray, float]:
        inliers = residuals < self.threshold
        return float(np.count_nonzero(inliers)), inliers, self.threshold

    def should_stop(self, best_score: float) -> bool:
        return False


class _TruncatedScoring(_ConsensusScoring):
    """MSAC: sum of squared residuals truncated at the threshold."""

    higher_is_better = False

    def evaluate(self, residuals: np.ndarray) -> Tuple[float, np.ndarray, float]:
        t2 = self.threshold**2
        cost = float(np.sum(np.minimum(residuals**2, t2)))
        return cost, residuals < self.threshold, self.threshold


class _MedianScoring:
    """LMedS / PROMedS: median of squared residuals.

    The inlier threshold is the robust standard deviation estimated from
    the median (Rousseeuw & Leroy), scaled by the inlier factor and never
    below the stop threshold.
    """

    higher_is_better = False

    def __init__(
        self,
        stop_threshold: float,
        num_samples: int,
        subset_size: int,
        inlier_factor: float = DEFAULT_INLIER_FACTOR,
        **kwargs,
    ):
        self.stop_threshold = stop_threshold
        self.inlier_factor = inlier_factor
        if num_samples > subset_size:
            self._correction = 1.0 + 5.0 / (num_samples - subset_size)
        else:
            self._correction = 1.0

    def evaluate(self, residuals: np.ndarray) -> Tuple[float, np.ndarray, float]:
        median = float(np.median(residuals**2))
        threshold = max(
            self.inlier_factor * _MAD_TO_STD * self._correction * np.sqrt(median),
            self.stop_threshold,
        )
        return median, residuals < threshold, threshold

    def should_stop(self, best_score: float) -> bool:
        return np.sqrt(best_score) <= self.stop_threshold


_STRATEGIES = {
    RobustMethod.RANSAC: _ConsensusScoring,
    RobustMethod.PROSAC: _ConsensusScoring,
    RobustMethod.MSAC: _TruncatedScoring,
    RobustMethod.LMEDS: _MedianScoring,
    RobustMethod.PROMEDS: _MedianScoring,
}


# =============================================================================
# Subset sampling
# =============================================================================
class _UniformSampler:
    """Draws subsets uniformly at random without replacement."""

    def __init__(self, num_samples: int, subset_size: int, rng: np.random.Generator):
        self.num_samples = num_samples
        self.subset_size = subset_size
        self.rng = rng

    def draw(self) -> np.ndarray:
        return self.rng.choice(self.num_samples, self.subset_size, replace=False)

    def pool_inlier_ratio(self, inliers: np.ndarray) -> float:
        return 0.0


class _ProgressiveSampler:
    """
    PROSAC progressive sampler.

    Readings are sorted by descending quality. Subsets are drawn from the
    n best readings, where n grows from the subset size s to N following
    the growth function

        Tₙ₊₁ = Tₙ · (n + 1) / (n + 1 - s),  with T_N = max_iterations

    The first subset is the s best readings. Until the pool stops growing,
    each subset holds the newest reading of the pool plus s - 1 readings
    drawn from the rest of the pool.
    """

    def __init__(
        self,
        quality_scores: np.ndarray,
        subset_size: int,
        max_iterations: int,
        rng: np.random.Generator,
    ):
        self.num_samples = len(quality_scores)
        self.subset_size = subset_size
        self.rng = rng
        self.order = np.argsort(-np.asarray(quality_scores, dtype=float), kind="stable")
        self.pool_size = subset_size

        t_n = float(max_iterations)
        for i in range(subset_size):
            t_n *= (subset_size - i) / (self.num_samples - i)
        self._t_n = t_n
        self._t_n_prime = 1
        self._t = 0

    def draw(self) -> np.ndarray:
        self._t += 1
        s = self.subset_size

        if self._t > self._t_n_prime and self.pool_size < self.num_samples:
            t_n_next = self._t_n * (self.pool_size + 1) / (self.pool_size + 1 - s)
            self._t_n_prime += int(np.ceil(t_n_next - self._t_n))
            self._t_n = t_n_next
            self.pool_size += 1

        if self._t_n_prime < self._t:
            positions = self.rng.choice(self.pool_size, s, replace=False)
        else:
            positions = np.append(
                self.rng.choice(self.pool_size - 1, s - 1, replace=False),
                self.pool_size - 1,
            )
        return self.order[positions]

    def pool_inlier_ratio(self, inliers: np.ndarray) -> float:
        pool = self.order[: self.pool_size]
        return float(np.count_nonzero(inliers[pool])) / self.pool_size


# =============================================================================
# Sampling loop
# =============================================================================
class RobustSampler:
    """
    Robust estimation of a model from a set of samples with outliers.

    The sampler is agnostic of the model being estimated: it draws subsets
    of sample indices, asks ``preliminary_solutions`` for candidate models
    and scores each candidate with the per-sample residuals returned by
    ``residuals``.

    Preliminary solvers signal a degenerate subset by raising SolverError,
    numpy.linalg.LinAlgError or ValueError; the subset is then skipped.

    Usage:
        >>> sampler = RobustSampler(
        ...     num_samples=len(readings),
        ...     subset_size=3,
        ...     preliminary_solutions=solve_subset,
        ...     residuals=compute_residuals,
        ...     method=RobustMethod.LMEDS,
        ...     stop_threshold=1e-4,
        ... )
        >>> model, inliers_data = sampler.run()
    """

    def __init__(
        self,
        num_samples: int,
        subset_size: int,
        preliminary_solutions: PreliminarySolver,
        residuals: ResidualFunction,
        method: RobustMethod = RobustMethod.RANSAC,
        threshold: Optional[float] = None,
        stop_threshold: Optional[float] = None,
        inlier_factor: float = DEFAULT_INLIER_FACTOR,
        confidence: float = DEFAULT_CONFIDENCE,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        quality_scores: Optional[np.ndarray] = None,
        keep_inliers: bool = False,
        keep_residuals: bool = False,
        rng: Optional[np.random.Generator] = None,
        on_iteration: Optional[Callable[[int], None]] = None,
        on_progress: Optional[Callable[[float], None]] = None,
    ):
        """Initialize the robust sampler.

        Args:
            num_samples: Total number of samples N.
            subset_size: Number of samples s drawn per iteration (s ≤ N).
            preliminary_solutions: Function mapping an index array of length
                s to a list of candidate solutions.
            residuals: Function mapping a candidate to the residual of every
                sample, shape (N,).
            method: Robust method deciding scoring and termination.
            threshold: Inlier threshold for RANSAC, MSAC and PROSAC.
            stop_threshold: Stop threshold for LMedS and PROMedS.
            inlier_factor: Scale of the robust LMedS inlier threshold.
            confidence: Probability of drawing an all-inlier subset, in (0, 1).
            max_iterations: Maximum number of iterations (≥ 1).
            progress_delta: Minimum progress change between notifications.
            quality_scores: Sample quality (higher is better), shape (N,).
                Required by PROSAC and PROMedS.
            keep_inliers: Keep the inlier mask for RANSAC / PROSAC.
            keep_residuals: Keep the residuals for RANSAC / PROSAC.
            rng: Random generator; a fresh default_rng() when None.
            on_iteration: Called with the 1-based iteration number.
            on_progress: Called with the progress in [0, 1].

        Raises:
            ValueError: If any parameter is out of range.
        """
        method = RobustMethod.coerce(method)
        if subset_size < 1 or subset_size > num_samples:
            raise ValueError(
                f"subset_size must be in [1, {num_samples}], got {subset_size}"
            )
        if not 0.0 < confidence < 1.0:
            raise ValueError(f"confidence must be in (0, 1), got {confidence}")
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be at least 1, got {max_iterations}")
        if not 0.0 <= progress_delta <= 1.0:
            raise ValueError(f"progress_delta must be in [0, 1], got {progress_delta}")

        if method.uses_stop_threshold:
            if stop_threshold is None or stop_threshold <= 0:
                raise ValueError(f"stop_threshold must be positive, got {stop_threshold}")
        elif threshold is None or threshold <= 0:
            raise ValueError(f"threshold must be positive, got {threshold}")

        if method.uses_quality_scores:
            if quality_scores is None:
                raise ValueError(f"{method.name} requires quality scores")
            quality_scores = np.asarray(quality_scores, dtype=float)
            if quality_scores.shape != (num_samples,):
                raise ValueError(
                    f"Expected {num_samples} quality scores, got shape {quality_scores.shape}"
                )

        self.num_samples = num_samples
        self.subset_size = subset_size
        self.preliminary_solutions = preliminary_solutions
        self.residuals = residuals
        self.method = method
        self.confidence = confidence
        self.max_iterations = max_iterations
        self.progress_delta = progress_delta
        self.quality_scores = quality_scores
        self.keep_inliers = keep_inliers
        self.keep_residuals = keep_residuals
        self.rng = rng if rng is not None else np.random.default_rng()
        self.on_iteration = on_iteration
        self.on_progress = on_progress

        self._scoring = _STRATEGIES[method](
            threshold=threshold,
            stop_threshold=stop_threshold,
            inlier_factor=inlier_factor,
            num_samples=num_samples,
            subset_size=subset_size,
        )
        self.iterations = 0

    def _make_sampler(self):
        if self.method.uses_quality_scores:
            return _ProgressiveSampler(
                self.quality_scores, self.subset_size, self.max_iterations, self.rng
            )
        return _UniformSampler(self.num_samples, self.subset_size, self.rng)

    def _is_better(self, score: float, best_score: Optional[float]) -> bool:
        if best_score is None:
            return True
        if self._scoring.higher_is_better:
            return score > best_score
        return score < best_score

    def _candidates(self, indices: np.ndarray) -> List[Any]:
        try:
            return list(self.preliminary_solutions(indices))
        except (SolverError, np.linalg.LinAlgError, ValueError) as e:
            logger.debug("Skipping subset %s: %s", indices.tolist(), e)
            return []

    def run(self) -> Tuple[Any, InliersData]:
        """
        Run the sampling loop.

        Returns:
            Tuple of (best candidate, InliersData of that candidate).

        Raises:
            RobustEstimationError: If no subset produced a valid candidate.
        """
        sampler = self._make_sampler()

        best = None
        best_score = None
        best_inliers = None
        best_residuals = None
        best_threshold = 0.0

        required = self.max_iterations
        last_progress = 0.0
        iteration = 0

        while iteration < min(required, self.max_iterations):
            indices = sampler.draw()

            for candidate in self._candidates(indices):
                residuals = np.asarray(self.residuals(candidate), dtype=float)
                if residuals.shape != (self.num_samples,) or not np.all(np.isfinite(residuals)):
                    continue

                score, inliers, threshold = self._scoring.evaluate(residuals)
                if not self._is_better(score, best_score):
                    continue

                best, best_score = candidate, score
                best_inliers, best_residuals, best_threshold = inliers, residuals, threshold

                ratio = np.count_nonzero(inliers) / self.num_samples
                ratio = max(ratio, sampler.pool_inlier_ratio(inliers))
                required = required_iterations(
                    ratio, self.subset_size, self.confidence, self.max_iterations
                )

            iteration += 1
            if self.on_iteration is not None:
                self.on_iteration(iteration)

            total = max(min(required, self.max_iterations), iteration)
            progress = min(iteration / total, 1.0)
            if progress > last_progress and progress - last_progress >= self.progress_delta:
                last_progress = progress
                if self.on_progress is not None:
                    self.on_progress(progress)

            if best is not None and self._scoring.should_stop(best_score):
                break

        self.iterations = iteration

        if best is None:
            raise RobustEstimationError(
                f"{self.method.name} found no valid solution in {iteration} iterations"
            )

        keep_all = self.method not in (RobustMethod.RANSAC, RobustMethod.PROSAC)
        num_inliers = int(np.count_nonzero(best_inliers))
        inliers_data = InliersData(
            inliers=best_inliers if keep_all or self.keep_inliers else None,
            residuals=best_residuals if keep_all or self.keep_residuals else None,
            num_inliers=num_inliers,
            threshold=float(best_threshold),
            best_score=float(best_score),
        )

        logger.debug(
            "%s finished after %d iterations: %d/%d inliers, best score %.6g",
            self.method.name,
            iteration,
            num_inliers,
            self.num_samples,
            best_score,
        )
        return best, inliers_data
