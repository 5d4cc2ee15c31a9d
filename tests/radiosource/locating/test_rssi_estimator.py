"""
Unit tests for the RSSI and ranging+RSSI radio source estimators.
"""

import numpy as np
import pytest

from radiosource.errors import NotReadyError
from radiosource.locating import RangingAndRssiRadioSourceEstimator, RssiRadioSourceEstimator
from radiosource.rf.measurement_models import dbm_to_power, expected_rssi
from radiosource.types import Beacon, CovarianceStatus, Reading, WifiAccessPoint

FREQUENCY = 2.4e9
AP = WifiAccessPoint("bssid-1", FREQUENCY)
SOURCE = np.array([2.0, -1.0])
POWER_DBM = -5.0
EXPONENT = 2.3


def ring_sensors(n=16, radius=8.0, center=SOURCE):
    angles = np.linspace(0.0, 2.0 * np.pi, n, endpoint=False)
    # Alternate radii so that the exponent is observable
    radii = np.where(np.arange(n) % 2 == 0, radius, 2.5 * radius)
    return center + np.column_stack([radii * np.cos(angles), radii * np.sin(angles)])


def make_readings(sensors, with_distance=False, source=AP, exponent=EXPONENT):
    rssi = expected_rssi(sensors, SOURCE, POWER_DBM, exponent, FREQUENCY)
    readings = []
    for p, r in zip(sensors, rssi):
        distance = float(np.linalg.norm(p - SOURCE)) if with_distance else None
        readings.append(Reading(source, p, distance=distance, rssi=float(r)))
    return readings


class TestRssiEstimatorConfiguration:
    """Test minimum readings and readiness rules."""

    @pytest.mark.parametrize(
        "position, power, path_loss, expected",
        [
            (True, True, False, 4),
            (True, True, True, 5),
            (True, False, False, 3),
            (False, True, False, 2),
            (False, True, True, 3),
        ],
    )
    def test_min_readings(self, position, power, path_loss, expected):
        estimator = RssiRadioSourceEstimator(
            position_estimation_enabled=position,
            transmitted_power_estimation_enabled=power,
            path_loss_estimation_enabled=path_loss,
        )
        assert estimator.min_readings == expected

    def test_min_readings_3d(self):
        assert RssiRadioSourceEstimator(dims=3).min_readings == 5

    def test_nothing_enabled_is_not_ready(self):
        estimator = RssiRadioSourceEstimator(
            make_readings(ring_sensors()),
            initial_position=SOURCE,
            initial_transmitted_power_dbm=0.0,
            position_estimation_enabled=False,
            transmitted_power_estimation_enabled=False,
        )
        assert not estimator.is_ready
        with pytest.raises(NotReadyError):
            estimator.estimate()

    def test_fixed_position_requires_initial_position(self):
        estimator = RssiRadioSourceEstimator(
            make_readings(ring_sensors()), position_estimation_enabled=False
        )
        assert not estimator.is_ready

        estimator.initial_position = SOURCE
        assert estimator.is_ready

    def test_fixed_power_requires_initial_power(self):
        estimator = RssiRadioSourceEstimator(
            make_readings(ring_sensors()), transmitted_power_estimation_enabled=False
        )
        assert not estimator.is_ready

        estimator.initial_transmitted_power_dbm = POWER_DBM
        assert estimator.is_ready
        assert estimator.initial_transmitted_power == pytest.approx(dbm_to_power(POWER_DBM))

    def test_initial_power_in_milliwatts(self):
        estimator = RssiRadioSourceEstimator(
            make_readings(ring_sensors()), transmitted_power_estimation_enabled=False
        )

        estimator.initial_transmitted_power = 0.5
        assert estimator.initial_transmitted_power_dbm == pytest.approx(-3.0103, abs=1e-4)
        assert estimator.initial_transmitted_power == pytest.approx(0.5)
        assert estimator.is_ready

        with pytest.raises(ValueError):
            estimator.initial_transmitted_power = 0.0
        assert estimator.initial_transmitted_power == pytest.approx(0.5)

        estimator.initial_transmitted_power = None
        assert estimator.initial_transmitted_power_dbm is None
        assert not estimator.is_ready

    def test_ranging_only_reading_rejected(self):
        readings = make_readings(ring_sensors())
        readings.append(Reading(AP, np.array([0.0, 0.0]), distance=3.0))
        with pytest.raises(ValueError):
            RssiRadioSourceEstimator(readings)


class TestRssiEstimation:
    """Test path-loss model fits from exact RSSI values."""

    def test_power_and_exponent_with_known_position(self):
        estimator = RssiRadioSourceEstimator(
            make_readings(ring_sensors()),
            initial_position=SOURCE,
            position_estimation_enabled=False,
            path_loss_estimation_enabled=True,
        )

        located = estimator.estimate()

        assert located.transmitted_power_dbm == pytest.approx(POWER_DBM, abs=1e-6)
        assert located.path_loss_exponent == pytest.approx(EXPONENT, abs=1e-6)
        np.testing.assert_allclose(located.position, SOURCE)
        assert located.position_covariance is None
        assert located.transmitted_power_std > 0
        assert located.path_loss_exponent_std > 0
        assert estimator.chi_sq == pytest.approx(0.0, abs=1e-8)

    def test_position_and_power_from_nearby_start(self):
        estimator = RssiRadioSourceEstimator(
            make_readings(ring_sensors(), exponent=2.0),
            initial_position=SOURCE + np.array([0.5, 0.5]),
            initial_transmitted_power_dbm=0.0,
        )

        estimator.estimate()

        np.testing.assert_allclose(estimator.estimated_position, SOURCE, atol=1e-4)
        assert estimator.estimated_transmitted_power_dbm == pytest.approx(POWER_DBM, abs=1e-4)
        assert estimator.estimated_path_loss_exponent == 2.0
        assert estimator.estimated_path_loss_exponent_variance is None
        assert estimator.covariance.shape == (3, 3)
        assert estimator.estimated_transmitted_power_variance == pytest.approx(
            estimator.covariance[2, 2]
        )

    def test_beacon_source(self):
        beacon = Beacon(identifiers=("uuid", "1", "2"), transmitted_power_dbm=POWER_DBM)
        estimator = RssiRadioSourceEstimator(
            make_readings(ring_sensors(), source=beacon),
            initial_position=SOURCE,
            position_estimation_enabled=False,
            path_loss_estimation_enabled=True,
        )

        located = estimator.estimate()

        assert located.source is beacon
        assert located.frequency == pytest.approx(2.4e9)
        assert located.has_power


class TestRangingAndRssiEstimation:
    """Test position from ranging, then power from RSSI."""

    def test_min_readings(self):
        assert RangingAndRssiRadioSourceEstimator().min_readings == 4
        assert RangingAndRssiRadioSourceEstimator(path_loss_estimation_enabled=True).min_readings == 5
        assert (
            RangingAndRssiRadioSourceEstimator(
                dims=3, transmitted_power_estimation_enabled=False
            ).min_readings
            == 4
        )

    def test_readings_need_both_measurements(self):
        with pytest.raises(ValueError):
            RangingAndRssiRadioSourceEstimator(make_readings(ring_sensors()))

    def test_position_power_and_exponent(self):
        estimator = RangingAndRssiRadioSourceEstimator(
            make_readings(ring_sensors(), with_distance=True),
            path_loss_estimation_enabled=True,
        )

        located = estimator.estimate()

        np.testing.assert_allclose(located.position, SOURCE, atol=1e-6)
        assert located.transmitted_power_dbm == pytest.approx(POWER_DBM, abs=1e-5)
        assert located.path_loss_exponent == pytest.approx(EXPONENT, abs=1e-5)
        assert estimator.covariance.shape == (4, 4)
        assert estimator.covariance_status == CovarianceStatus.AVAILABLE
        # Position and power blocks are independent
        np.testing.assert_array_equal(estimator.covariance[:2, 2:], 0.0)

    def test_position_only_reports_initial_values(self):
        estimator = RangingAndRssiRadioSourceEstimator(
            make_readings(ring_sensors(), with_distance=True),
            initial_transmitted_power_dbm=1.0,
            transmitted_power_estimation_enabled=False,
        )

        located = estimator.estimate()

        np.testing.assert_allclose(located.position, SOURCE, atol=1e-6)
        assert located.transmitted_power_dbm == 1.0
        assert located.transmitted_power_std is None
        assert estimator.covariance.shape == (2, 2)
