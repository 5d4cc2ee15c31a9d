"""
Unit tests for the mixed radio source estimator.
"""

import numpy as np
import pytest

from radiosource.errors import NotReadyError
from radiosource.locating import (
    MixedRadioSourceEstimator,
    RadioSourceEstimatorListener,
    RangingAndRssiRadioSourceEstimator,
)
from radiosource.rf.measurement_models import expected_rssi
from radiosource.types import CovarianceStatus, Reading, WifiAccessPoint

FREQUENCY = 2.4e9
AP = WifiAccessPoint("bssid-3", FREQUENCY)
SOURCE = np.array([1.5, -2.0])
POWER_DBM = -3.0
EXPONENT = 2.2


def ring_sensors(n=12, radius=6.0):
    angles = np.linspace(0.0, 2.0 * np.pi, n, endpoint=False)
    radii = np.where(np.arange(n) % 2 == 0, radius, 2.5 * radius)
    return SOURCE + np.column_stack([radii * np.cos(angles), radii * np.sin(angles)])


def make_readings(sensors, kinds, exponent=EXPONENT):
    """
    One reading per sensor. ``kinds`` holds "both", "ranging" or "rssi"
    for each of them.
    """
    rssi = expected_rssi(sensors, SOURCE, POWER_DBM, exponent, FREQUENCY)
    readings = []
    for p, r, kind in zip(sensors, rssi, kinds):
        distance = float(np.linalg.norm(p - SOURCE)) if kind != "rssi" else None
        value = float(r) if kind != "ranging" else None
        readings.append(Reading(AP, p, distance=distance, rssi=value))
    return readings


def mixed_readings():
    """Readings 0-3 carry both measurements, 4-7 a distance and 8-11 an RSSI value."""
    return make_readings(ring_sensors(), ["both"] * 4 + ["ranging"] * 4 + ["rssi"] * 4)


class StartEndListener(RadioSourceEstimatorListener):
    def __init__(self):
        self.start = 0
        self.end = 0

    def on_estimate_start(self, estimator):
        self.start += 1

    def on_estimate_end(self, estimator):
        self.end += 1


class TestMixedConfiguration:
    """Test reading requirements and readiness."""

    @pytest.mark.parametrize(
        "power, path_loss, expected",
        [(False, False, 3), (True, False, 4), (False, True, 4), (True, True, 5)],
    )
    def test_min_readings(self, power, path_loss, expected):
        estimator = MixedRadioSourceEstimator(
            transmitted_power_estimation_enabled=power,
            path_loss_estimation_enabled=path_loss,
        )
        assert estimator.min_readings == expected
        assert estimator.min_rssi_readings == expected
        assert estimator.min_ranging_readings == 3

        estimator_3d = MixedRadioSourceEstimator(
            dims=3,
            transmitted_power_estimation_enabled=power,
            path_loss_estimation_enabled=path_loss,
        )
        assert estimator_3d.min_readings == expected + 1
        assert estimator_3d.min_ranging_readings == 4

    def test_reading_counts(self):
        estimator = MixedRadioSourceEstimator(mixed_readings())

        assert estimator.num_ranging_readings == 8
        assert estimator.num_rssi_readings == 8
        assert not estimator.rssi_position_enabled
        assert estimator.is_ready

    def test_not_ready_without_enough_rssi_readings(self):
        readings = make_readings(ring_sensors(), ["ranging"] * 8 + ["rssi"] * 3)
        estimator = MixedRadioSourceEstimator(readings)

        assert not estimator.is_ready
        with pytest.raises(NotReadyError):
            estimator.estimate()

        estimator.transmitted_power_estimation_enabled = False
        assert estimator.is_ready

    def test_fixed_power_requires_initial_power(self):
        estimator = MixedRadioSourceEstimator(
            mixed_readings(),
            transmitted_power_estimation_enabled=False,
            path_loss_estimation_enabled=True,
        )
        assert not estimator.is_ready

        estimator.initial_transmitted_power_dbm = POWER_DBM
        assert estimator.is_ready

    def test_rssi_position_needs_rssi_readings(self):
        readings = make_readings(ring_sensors(), ["ranging"] * 2 + ["rssi"] * 3)
        estimator = MixedRadioSourceEstimator(readings)

        assert estimator.rssi_position_enabled
        assert not estimator.is_ready

        estimator.readings = make_readings(ring_sensors(), ["ranging"] * 2 + ["rssi"] * 4)
        assert estimator.is_ready


class TestMixedEstimation:
    """Test estimation from exact mixed readings."""

    def test_position_power_and_exponent(self):
        listener = StartEndListener()
        estimator = MixedRadioSourceEstimator(
            mixed_readings(), path_loss_estimation_enabled=True, listener=listener
        )

        located = estimator.estimate()

        np.testing.assert_allclose(located.position, SOURCE, atol=1e-6)
        assert located.transmitted_power_dbm == pytest.approx(POWER_DBM, abs=1e-5)
        assert located.path_loss_exponent == pytest.approx(EXPONENT, abs=1e-5)
        assert estimator.covariance.shape == (4, 4)
        assert estimator.covariance_status == CovarianceStatus.AVAILABLE
        np.testing.assert_array_equal(estimator.covariance[:2, 2:], 0.0)
        assert listener.start == 1
        assert listener.end == 1

    def test_position_only_reports_initial_values(self):
        estimator = MixedRadioSourceEstimator(
            mixed_readings(),
            initial_transmitted_power_dbm=1.0,
            transmitted_power_estimation_enabled=False,
        )

        located = estimator.estimate()

        np.testing.assert_allclose(located.position, SOURCE, atol=1e-6)
        assert located.transmitted_power_dbm == 1.0
        assert located.transmitted_power_std is None
        assert located.path_loss_exponent == 2.0
        assert estimator.covariance.shape == (2, 2)

    def test_fixed_power_estimates_exponent(self):
        estimator = MixedRadioSourceEstimator(
            mixed_readings(),
            initial_transmitted_power_dbm=POWER_DBM,
            transmitted_power_estimation_enabled=False,
            path_loss_estimation_enabled=True,
        )

        located = estimator.estimate()

        assert located.transmitted_power_dbm == POWER_DBM
        assert located.transmitted_power_std is None
        assert located.path_loss_exponent == pytest.approx(EXPONENT, abs=1e-5)
        assert located.path_loss_exponent_std > 0
        assert estimator.covariance.shape == (3, 3)

    def test_rssi_position_mode(self):
        sensors = ring_sensors(n=16, radius=8.0)
        readings = make_readings(sensors, ["ranging"] * 2 + ["rssi"] * 14, exponent=2.0)
        estimator = MixedRadioSourceEstimator(
            readings,
            initial_position=SOURCE + np.array([0.5, 0.5]),
            initial_transmitted_power_dbm=0.0,
        )

        assert estimator.rssi_position_enabled
        located = estimator.estimate()

        np.testing.assert_allclose(located.position, SOURCE, atol=1e-4)
        assert located.transmitted_power_dbm == pytest.approx(POWER_DBM, abs=1e-4)
        assert estimator.covariance.shape == (3, 3)

    def test_matches_ranging_and_rssi_when_readings_carry_both(self):
        readings = make_readings(ring_sensors(), ["both"] * 12)

        mixed = MixedRadioSourceEstimator(readings, path_loss_estimation_enabled=True)
        combined = RangingAndRssiRadioSourceEstimator(readings, path_loss_estimation_enabled=True)
        mixed.estimate()
        combined.estimate()

        np.testing.assert_allclose(mixed.estimated_position, combined.estimated_position, atol=1e-9)
        assert mixed.estimated_transmitted_power_dbm == pytest.approx(
            combined.estimated_transmitted_power_dbm, abs=1e-9
        )
        assert mixed.estimated_path_loss_exponent == pytest.approx(
            combined.estimated_path_loss_exponent, abs=1e-9
        )
