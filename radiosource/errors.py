"""Exceptions raised by radio source estimators.

Invalid configuration values are rejected with the built-in ValueError
(or TypeError for a wrong type), before any state is modified. The
classes below cover the remaining failure modes.
"""


class RadioSourceError(Exception):
    """Base class for radio source estimation errors."""


class LockedError(RadioSourceError):
    """Raised when an estimator is modified while an estimation is running."""

    def __init__(self, message: str = "estimator is locked while estimating"):
        super().__init__(message)


class NotReadyError(RadioSourceError):
    """Raised when estimate() is called without enough configured data."""

    def __init__(self, message: str = "estimator is not ready"):
        super().__init__(message)


class RobustEstimationError(RadioSourceError):
    """Raised when robust sampling cannot find any valid candidate solution."""


class SolverError(RadioSourceError):
    """Raised by a solver when its linear system is singular or degenerate."""
