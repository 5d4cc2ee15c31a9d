"""
RF (Radio Frequency) module.

This module implements the radio measurement models and the lateration
solvers used to locate radio sources.

Submodules:
    measurement_models: Ranging and RSSI path-loss models, dBm conversions
    lateration: Linear and nonlinear lateration, power/path-loss fitting
    rssi_fitting: Nonlinear fit of the RSSI path-loss model
"""

from radiosource.rf.lateration import (
    homogeneous_lateration,
    inhomogeneous_lateration,
    linear_power_pathloss,
    nonlinear_lateration,
)
from radiosource.rf.measurement_models import (
    SPEED_OF_LIGHT,
    average_accuracy,
    confidence_to_std_factor,
    dbm_to_power,
    expected_rssi,
    frequency_gain_db,
    inflate_distance_std,
    power_to_dbm,
    ranging_residuals,
    rssi_jacobian,
    rssi_to_distance,
    squared_distances,
)
from radiosource.rf.rssi_fitting import (
    RssiFitResult,
    fit_rssi_model,
    propagate_position_covariances,
)

__all__ = [
    # Constants
    "SPEED_OF_LIGHT",
    # Unit conversions
    "dbm_to_power",
    "power_to_dbm",
    # Measurement models
    "frequency_gain_db",
    "squared_distances",
    "expected_rssi",
    "rssi_jacobian",
    "rssi_to_distance",
    "ranging_residuals",
    # Accuracy
    "average_accuracy",
    "confidence_to_std_factor",
    "inflate_distance_std",
    # Lateration
    "homogeneous_lateration",
    "inhomogeneous_lateration",
    "nonlinear_lateration",
    "linear_power_pathloss",
    # RSSI model fitting
    "RssiFitResult",
    "fit_rssi_model",
    "propagate_position_covariances",
]
