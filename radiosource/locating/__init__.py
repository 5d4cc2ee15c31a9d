"""
Radio source locating module.

This module implements the estimators that locate a radio source (Wi-Fi
access point, BLE beacon) and estimate its transmitted power from readings
taken at known positions.

Estimators:
    - Ranging, RSSI and combined ranging+RSSI estimators
    - Mixed estimator (readings with a distance, an RSSI value or both)
    - Robust versions of the above (RANSAC, LMedS, MSAC, PROSAC, PROMedS)
    - Sequential robust estimator (ranging pass, then RSSI pass)
"""

from radiosource.locating.base import (
    DEFAULT_DISTANCE_STANDARD_DEVIATION,
    DEFAULT_PATH_LOSS_EXPONENT,
    DEFAULT_POWER_STANDARD_DEVIATION,
    RadioSourceEstimator,
    RadioSourceEstimatorListener,
    RadioSourceSolution,
)
from radiosource.locating.mixed import MixedRadioSourceEstimator
from radiosource.locating.ranging import RangingRadioSourceEstimator
from radiosource.locating.ranging_and_rssi import RangingAndRssiRadioSourceEstimator
from radiosource.locating.robust import (
    RobustRadioSourceEstimator,
    RobustRangingAndRssiRadioSourceEstimator,
    RobustRangingRadioSourceEstimator,
    RobustRssiRadioSourceEstimator,
    create_robust_estimator,
)
from radiosource.locating.rssi import RssiRadioSourceEstimator
from radiosource.locating.sequential import SequentialRobustRadioSourceEstimator

__all__ = [
    # Base
    "RadioSourceEstimator",
    "RadioSourceEstimatorListener",
    "RadioSourceSolution",
    "DEFAULT_DISTANCE_STANDARD_DEVIATION",
    "DEFAULT_POWER_STANDARD_DEVIATION",
    "DEFAULT_PATH_LOSS_EXPONENT",
    # Non-robust estimators
    "RangingRadioSourceEstimator",
    "RssiRadioSourceEstimator",
    "RangingAndRssiRadioSourceEstimator",
    "MixedRadioSourceEstimator",
    # Robust estimators
    "RobustRadioSourceEstimator",
    "RobustRangingRadioSourceEstimator",
    "RobustRssiRadioSourceEstimator",
    "RobustRangingAndRssiRadioSourceEstimator",
    "create_robust_estimator",
    # Sequential
    "SequentialRobustRadioSourceEstimator",
]
