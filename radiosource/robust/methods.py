"""Robust estimation methods and their default parameters."""

from enum import Enum
from typing import Union


class RobustMethod(Enum):
    """Robust estimation method used to discard outlier readings.

    Attributes:
        RANSAC: Random sample consensus, maximizes the number of inliers.
        LMEDS: Least median of squares, minimizes the median squared residual.
        MSAC: M-estimator sample consensus, minimizes truncated squared residuals.
        PROSAC: RANSAC drawing subsets progressively by reading quality.
        PROMEDS: LMedS drawing subsets progressively by reading quality.

    Example:
        >>> RobustMethod.coerce("lmeds") is RobustMethod.LMEDS
        True
        >>> RobustMethod.PROSAC.uses_quality_scores
        True
    """

    RANSAC = "ransac"
    LMEDS = "lmeds"
    MSAC = "msac"
    PROSAC = "prosac"
    PROMEDS = "promeds"

    @property
    def uses_quality_scores(self) -> bool:
        """Whether subsets are drawn in order of reading quality."""
        return self in (RobustMethod.PROSAC, RobustMethod.PROMEDS)

    @property
    def uses_stop_threshold(self) -> bool:
        """Whether the method scores by median residual and stops on a threshold."""
        return self in (RobustMethod.LMEDS, RobustMethod.PROMEDS)

    @classmethod
    def coerce(cls, value: Union["RobustMethod", str]) -> "RobustMethod":
        """Convert a method name such as ``"msac"`` into a RobustMethod."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.lower())
            except ValueError:
                raise ValueError(
                    f"Unknown robust method {value!r}. "
                    f"Use one of {[m.value for m in cls]}"
                ) from None
        raise TypeError(f"robust method must be a RobustMethod or str, got {type(value).__name__}")


# Shared defaults
DEFAULT_CONFIDENCE = 0.99
DEFAULT_MAX_ITERATIONS = 5000
DEFAULT_PROGRESS_DELTA = 0.05

# RANSAC / MSAC / PROSAC residual threshold
DEFAULT_THRESHOLD = 0.1

# LMedS / PROMedS
DEFAULT_STOP_THRESHOLD = 1e-4
DEFAULT_INLIER_FACTOR = 1.5

DEFAULT_ROBUST_METHOD = RobustMethod.PROMEDS
