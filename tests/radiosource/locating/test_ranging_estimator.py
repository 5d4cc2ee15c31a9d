"""
Unit tests for the ranging radio source estimator.

Covers the estimator life cycle (readiness, locking, listener callbacks)
shared by every estimator, and lateration from exact distances.
"""

import numpy as np
import pytest

from radiosource.errors import LockedError, NotReadyError
from radiosource.locating import RadioSourceEstimatorListener, RangingRadioSourceEstimator
from radiosource.types import CovarianceStatus, LocatedRadioSource, Reading, WifiAccessPoint

AP = WifiAccessPoint("bssid-1", 2.4e9)


def make_readings(source, sensors, **kwargs):
    return [Reading(AP, p, distance=float(np.linalg.norm(p - source)), **kwargs) for p in sensors]


class CountingListener(RadioSourceEstimatorListener):
    """Counts callbacks and checks the estimator is locked inside them."""

    def __init__(self):
        self.start = 0
        self.end = 0
        self.locked_errors = 0

    def on_estimate_start(self, estimator):
        self.start += 1
        self._check_locked(estimator)

    def on_estimate_end(self, estimator):
        self.end += 1
        self._check_locked(estimator)

    def _check_locked(self, estimator):
        assert estimator.is_locked
        try:
            estimator.readings = estimator.readings
        except LockedError:
            self.locked_errors += 1
        try:
            estimator.estimate()
        except LockedError:
            self.locked_errors += 1


class TestRangingEstimatorConfiguration:
    """Test readiness and reading validation."""

    def test_min_readings(self):
        assert RangingRadioSourceEstimator().min_readings == 3
        assert RangingRadioSourceEstimator(dims=3).min_readings == 4

    def test_not_ready_without_readings(self):
        estimator = RangingRadioSourceEstimator()

        assert not estimator.is_ready
        with pytest.raises(NotReadyError):
            estimator.estimate()
        assert estimator.estimated_position is None
        assert estimator.estimated_radio_source is None

    def test_too_few_readings_rejected(self):
        sensors = np.array([[0.0, 0.0], [1.0, 0.0]])
        with pytest.raises(ValueError):
            RangingRadioSourceEstimator(make_readings(np.zeros(2), sensors))

    def test_rssi_only_reading_rejected(self):
        readings = make_readings(np.zeros(2), np.eye(2) * 5.0)
        readings.append(Reading(AP, np.array([1.0, 1.0]), rssi=-50.0))
        with pytest.raises(ValueError):
            RangingRadioSourceEstimator(readings)

    def test_wrong_dimension_rejected(self):
        sensors = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        with pytest.raises(ValueError):
            RangingRadioSourceEstimator(make_readings(np.zeros(3), sensors), dims=2)

    def test_invalid_dims(self):
        with pytest.raises(ValueError):
            RangingRadioSourceEstimator(dims=4)

    def test_initial_position_shape_checked(self):
        with pytest.raises(ValueError):
            RangingRadioSourceEstimator(initial_position=np.zeros(3))


class TestRangingEstimation:
    """Test position estimation from exact distances."""

    def setup_method(self):
        self.source = np.array([12.3, -7.8])
        rng = np.random.default_rng(3)
        self.sensors = rng.uniform(-20, 20, size=(10, 2))

    @pytest.mark.parametrize("homogeneous", [True, False])
    def test_exact_position(self, homogeneous):
        estimator = RangingRadioSourceEstimator(
            make_readings(self.source, self.sensors),
            homogeneous_linear_solver_used=homogeneous,
        )

        located = estimator.estimate()

        assert isinstance(located, LocatedRadioSource)
        assert located.source == AP
        np.testing.assert_allclose(located.position, self.source, atol=1e-6)
        assert estimator.covariance_status == CovarianceStatus.AVAILABLE
        assert estimator.estimated_position_covariance.shape == (2, 2)
        assert estimator.estimated_transmitted_power_dbm is None

    def test_minimal_square_layout(self):
        ap = WifiAccessPoint("bssid-1", 2.4e9)
        sensors = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0]])
        readings = [
            Reading(ap, p, distance=np.linalg.norm(p - [3.0, 4.0])) for p in sensors
        ]

        located = RangingRadioSourceEstimator(readings).estimate()

        assert np.allclose(located.position, [3.0, 4.0])

    def test_linear_only_has_no_covariance(self):
        estimator = RangingRadioSourceEstimator(
            make_readings(self.source, self.sensors), non_linear_solver_enabled=False
        )

        estimator.estimate()

        np.testing.assert_allclose(estimator.estimated_position, self.source, atol=1e-6)
        assert estimator.covariance is None
        assert estimator.covariance_status == CovarianceStatus.NOT_REQUESTED

    def test_initial_position_skips_linear_solver(self):
        estimator = RangingRadioSourceEstimator(
            make_readings(self.source, self.sensors),
            initial_position=self.source + np.array([1.0, -1.0]),
        )

        estimator.estimate()

        np.testing.assert_allclose(estimator.estimated_position, self.source, atol=1e-6)

    def test_3d_position(self):
        rng = np.random.default_rng(5)
        source = np.array([1.0, -2.0, 3.0])
        sensors = rng.uniform(-10, 10, size=(8, 3))
        estimator = RangingRadioSourceEstimator(make_readings(source, sensors), dims=3)

        estimator.estimate()

        np.testing.assert_allclose(estimator.estimated_position, source, atol=1e-6)
        assert estimator.estimated_position_covariance.shape == (3, 3)

    def test_position_covariances_accepted(self):
        readings = make_readings(self.source, self.sensors, position_covariance=0.01 * np.eye(2))
        estimator = RangingRadioSourceEstimator(readings)

        estimator.estimate()

        np.testing.assert_allclose(estimator.estimated_position, self.source, atol=1e-6)

    def test_listener_and_lock(self):
        listener = CountingListener()
        estimator = RangingRadioSourceEstimator(
            make_readings(self.source, self.sensors), listener=listener
        )

        estimator.estimate()

        assert listener.start == 1
        assert listener.end == 1
        assert listener.locked_errors == 4
        assert not estimator.is_locked
