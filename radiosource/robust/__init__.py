"""
Robust estimation module.

This module implements the sampling engine shared by every robust radio
source estimator, with five interchangeable methods:
RANSAC, LMedS, MSAC, PROSAC and PROMedS.

Submodules:
    methods: RobustMethod enum and default parameters
    engine: Sampling loop, candidate scoring and progressive sampling
"""

from radiosource.robust.engine import InliersData, RobustSampler, required_iterations
from radiosource.robust.methods import (
    DEFAULT_CONFIDENCE,
    DEFAULT_INLIER_FACTOR,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_PROGRESS_DELTA,
    DEFAULT_ROBUST_METHOD,
    DEFAULT_STOP_THRESHOLD,
    DEFAULT_THRESHOLD,
    RobustMethod,
)

__all__ = [
    "RobustMethod",
    "RobustSampler",
    "InliersData",
    "required_iterations",
    # Defaults
    "DEFAULT_CONFIDENCE",
    "DEFAULT_MAX_ITERATIONS",
    "DEFAULT_PROGRESS_DELTA",
    "DEFAULT_THRESHOLD",
    "DEFAULT_STOP_THRESHOLD",
    "DEFAULT_INLIER_FACTOR",
    "DEFAULT_ROBUST_METHOD",
]
