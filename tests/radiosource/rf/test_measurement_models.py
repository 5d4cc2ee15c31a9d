"""
Unit tests for radio measurement models.

Tests dBm conversions, the RSSI path-loss model and its Jacobian, ranging
residuals and position covariance accuracy.
"""

import numpy as np
import pytest

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
)

FREQUENCY = 2.4e9


def numerical_jacobian(f, x, epsilon=1e-6):
    """Central difference Jacobian of f at x."""
    x = np.asarray(x, dtype=float)
    y0 = f(x)
    J = np.zeros((len(y0), len(x)))
    for j in range(len(x)):
        step = np.zeros_like(x)
        step[j] = epsilon
        J[:, j] = (f(x + step) - f(x - step)) / (2 * epsilon)
    return J


class TestPowerConversions:
    """Test dBm <-> mW conversions."""

    def test_reference_values(self):
        assert dbm_to_power(0.0) == pytest.approx(1.0)
        assert dbm_to_power(30.0) == pytest.approx(1000.0)
        assert power_to_dbm(1.0) == pytest.approx(0.0)
        assert power_to_dbm(0.001) == pytest.approx(-30.0)

    def test_conversions_are_inverse(self):
        values = np.array([-90.0, -45.5, 0.0, 12.3])
        np.testing.assert_allclose(power_to_dbm(dbm_to_power(values)), values)

    def test_non_positive_power_raises(self):
        with pytest.raises(ValueError):
            power_to_dbm(0.0)
        with pytest.raises(ValueError):
            power_to_dbm(np.array([1.0, -1.0]))


class TestPathLossModel:
    """Test the log-distance RSSI model."""

    def test_frequency_gain_matches_friis(self):
        wavelength = SPEED_OF_LIGHT / FREQUENCY
        expected = 20.0 * np.log10(wavelength / (4 * np.pi))
        assert frequency_gain_db(FREQUENCY, 2.0) == pytest.approx(expected)

    def test_frequency_gain_scales_with_exponent(self):
        assert frequency_gain_db(FREQUENCY, 3.0) == pytest.approx(
            1.5 * frequency_gain_db(FREQUENCY, 2.0)
        )

    def test_expected_rssi_at_one_meter(self):
        sensors = np.array([[1.0, 0.0]])
        rssi = expected_rssi(sensors, np.zeros(2), -10.0, 2.0, FREQUENCY)
        assert rssi[0] == pytest.approx(-10.0 + frequency_gain_db(FREQUENCY, 2.0))

    def test_expected_rssi_decays_with_distance(self):
        sensors = np.array([[1.0, 0.0, 0.0], [10.0, 0.0, 0.0], [100.0, 0.0, 0.0]])
        rssi = expected_rssi(sensors, np.zeros(3), 0.0, 3.0, FREQUENCY)
        np.testing.assert_allclose(np.diff(rssi), [-30.0, -30.0])

    def test_rssi_to_distance_inverts_model(self):
        sensors = np.array([[3.0, 4.0], [-6.0, 8.0]])
        source = np.zeros(2)
        rssi = expected_rssi(sensors, source, 5.0, 2.5, FREQUENCY)

        distances = rssi_to_distance(rssi, 5.0, 2.5, FREQUENCY)

        np.testing.assert_allclose(distances, [5.0, 10.0])

    def test_non_positive_frequency_raises(self):
        with pytest.raises(ValueError):
            frequency_gain_db(0.0)

    @pytest.mark.parametrize("dims", [2, 3])
    def test_jacobian_matches_numerical(self, dims):
        rng = np.random.default_rng(3)
        sensors = rng.uniform(-20, 20, size=(6, dims))
        source = rng.uniform(-5, 5, size=dims)
        power, exponent = -12.0, 2.7

        def model(params):
            return expected_rssi(sensors, params[:dims], params[dims], params[dims + 1], FREQUENCY)

        params = np.concatenate([source, [power, exponent]])
        expected = numerical_jacobian(model, params)

        J = rssi_jacobian(
            sensors, source, exponent, FREQUENCY,
            position=True, transmitted_power=True, path_loss=True,
        )

        np.testing.assert_allclose(J, expected, rtol=1e-5, atol=1e-6)

    def test_jacobian_column_selection(self):
        sensors = np.array([[1.0, 2.0], [3.0, -1.0], [0.5, 0.5]])
        source = np.array([4.0, 4.0])

        full = rssi_jacobian(sensors, source, 2.0, FREQUENCY, True, True, True)
        power_only = rssi_jacobian(sensors, source, 2.0, FREQUENCY, False, True, False)
        exponent_only = rssi_jacobian(sensors, source, 2.0, FREQUENCY, False, False, True)

        assert full.shape == (3, 4)
        np.testing.assert_allclose(power_only[:, 0], full[:, 2])
        np.testing.assert_allclose(exponent_only[:, 0], full[:, 3])


class TestRangingResiduals:

    def test_residuals_are_absolute(self):
        sensors = np.array([[0.0, 0.0], [10.0, 0.0]])
        source = np.array([3.0, 4.0])
        distances = np.array([6.0, 7.0])

        residuals = ranging_residuals(sensors, distances, source)

        expected = np.abs(np.linalg.norm(sensors - source, axis=1) - distances)
        np.testing.assert_allclose(residuals, expected)
        assert np.all(residuals >= 0)


class TestAccuracy:
    """Test average accuracy of position covariances."""

    def test_average_of_semi_axes(self):
        assert average_accuracy(np.diag([4.0, 1.0])) == pytest.approx(1.5)
        assert average_accuracy(np.diag([1.0, 4.0, 9.0])) == pytest.approx(2.0)

    def test_std_factor_scales_accuracy(self):
        cov = np.diag([4.0, 1.0])
        assert average_accuracy(cov, std_factor=2.0) == pytest.approx(3.0)

    def test_confidence_derives_std_factor(self):
        cov = np.eye(2)
        k = confidence_to_std_factor(0.95, 2)
        assert k == pytest.approx(np.sqrt(-2.0 * np.log(0.05)))
        assert average_accuracy(cov, confidence=0.95) == pytest.approx(k)

    def test_invalid_confidence_raises(self):
        with pytest.raises(ValueError):
            confidence_to_std_factor(1.0, 2)

    def test_non_positive_definite_covariance_raises(self):
        with pytest.raises(ValueError):
            average_accuracy(np.array([[1.0, 2.0], [2.0, 1.0]]))
        with pytest.raises(ValueError):
            average_accuracy(np.array([[1.0, 0.5], [0.0, 1.0]]))

    def test_inflate_distance_std(self):
        cov = np.diag([0.09, 0.09])
        assert inflate_distance_std(0.4, cov) == pytest.approx(0.5)
        assert inflate_distance_std(0.4, None) == pytest.approx(0.4)
        # Invalid covariances are ignored
        assert inflate_distance_std(0.4, -np.eye(2)) == pytest.approx(0.4)
