"""Type definitions for radio source estimation.

This module defines the data structures shared by every estimator in the
package: the readings taken at known sensor positions, the radio sources
being measured (Wi-Fi access points and BLE beacons), and the located
result returned once an estimation succeeds.

A single Reading type covers ranging, RSSI and combined ranging+RSSI
measurements; which estimator may consume it depends on which of the
two measurements are present.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional, Tuple

import numpy as np

# Type aliases for clarity and documentation
Position = np.ndarray  # Shape (d,), d=2 or d=3
Covariance = np.ndarray  # Shape (d, d), symmetric positive definite

DEFAULT_BEACON_FREQUENCY = 2.4e9  # Hz


class CovarianceStatus(Enum):
    """Outcome of the covariance computation of an estimation.

    Attributes:
        AVAILABLE: Covariance was requested and computed.
        NOT_REQUESTED: Refinement or covariance keeping was disabled.
        UNAVAILABLE: Covariance was requested, but the normal equations
            matrix was singular or not positive definite.
    """

    AVAILABLE = "available"
    NOT_REQUESTED = "not_requested"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class WifiAccessPoint:
    """
    Wi-Fi access point acting as a radio source.

    Two access points are the same radio source when their BSSID matches;
    frequency and SSID are descriptive metadata.

    Attributes:
        bssid: Basic service set identifier (MAC address of the radio).
        frequency: Carrier frequency in Hz (e.g., 2.4e9 or 5.0e9).
        ssid: Optional network name.

    Example:
        >>> ap = WifiAccessPoint(bssid="bssid-1", frequency=2.4e9, ssid="office")
        >>> ap == WifiAccessPoint(bssid="bssid-1", frequency=5.0e9)
        True
    """

    bssid: str
    frequency: float = field(compare=False)
    ssid: Optional[str] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.bssid, str) or not self.bssid:
            raise ValueError(f"bssid must be a non-empty string, got {self.bssid!r}")
        if self.frequency <= 0:
            raise ValueError(f"frequency must be positive, got {self.frequency}")


@dataclass(frozen=True)
class Beacon:
    """
    Bluetooth LE beacon acting as a radio source.

    Beacons are identified by their identifier list (e.g., UUID, major and
    minor); the remaining fields are advertisement metadata.

    Attributes:
        identifiers: Beacon identifiers, as strings.
        transmitted_power_dbm: Calibrated transmitted power in dBm.
        frequency: Carrier frequency in Hz. Defaults to 2.4 GHz.
        bluetooth_address: Optional Bluetooth MAC address.
        beacon_type_code: Advertisement type code.
        manufacturer: Manufacturer code.
        service_uuid: 16-bit service UUID, or -1 if not present.
        bluetooth_name: Optional advertised device name.
    """

    identifiers: Tuple[str, ...]
    transmitted_power_dbm: float = field(compare=False)
    frequency: float = field(default=DEFAULT_BEACON_FREQUENCY, compare=False)
    bluetooth_address: Optional[str] = field(default=None, compare=False)
    beacon_type_code: int = field(default=0, compare=False)
    manufacturer: int = field(default=0, compare=False)
    service_uuid: int = field(default=-1, compare=False)
    bluetooth_name: Optional[str] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "identifiers", tuple(self.identifiers))
        if len(self.identifiers) == 0:
            raise ValueError("identifiers must contain at least one identifier")
        if self.frequency <= 0:
            raise ValueError(f"frequency must be positive, got {self.frequency}")


@dataclass(frozen=True, eq=False)
class Reading:
    """
    Single measurement taken at a known sensor position.

    A reading measures a radio source from the position of the sensor
    (phone, robot, survey device) that observed it. It carries a ranging
    distance, a received signal strength, or both.

    Attributes:
        source: Radio source being measured. RSSI based estimation needs
                a ``frequency`` attribute (see WifiAccessPoint, Beacon).
        position: Sensor position, shape (2,) or (3,).
        distance: Measured distance to the source in meters, or None.
        rssi: Received signal strength in dBm, or None.
        position_covariance: Optional (d, d) covariance of ``position``.
        distance_std: Optional standard deviation of ``distance`` in meters.
        rssi_std: Optional standard deviation of ``rssi`` in dB.

    Example:
        >>> ap = WifiAccessPoint("bssid-1", 2.4e9)
        >>> reading = Reading(ap, np.array([1.0, 2.0]), distance=5.0, rssi=-60.0)
        >>> reading.has_ranging, reading.has_rssi, reading.dims
        (True, True, 2)
    """

    source: Any
    position: Position
    distance: Optional[float] = None
    rssi: Optional[float] = None
    position_covariance: Optional[Covariance] = None
    distance_std: Optional[float] = None
    rssi_std: Optional[float] = None

    def __post_init__(self) -> None:
        """Validate and normalize the reading."""
        position = np.asarray(self.position, dtype=float)
        if position.ndim != 1 or position.shape[0] not in (2, 3):
            raise ValueError(
                f"position must have shape (2,) or (3,), got {position.shape}"
            )
        if not np.all(np.isfinite(position)):
            raise ValueError("position contains non-finite values")
        object.__setattr__(self, "position", position)

        if self.distance is None and self.rssi is None:
            raise ValueError("a reading needs a distance, an rssi or both")
        if self.distance is not None and self.distance < 0:
            raise ValueError(f"distance must be non-negative, got {self.distance}")
        if self.distance_std is not None and self.distance_std <= 0:
            raise ValueError(f"distance_std must be positive, got {self.distance_std}")
        if self.rssi_std is not None and self.rssi_std <= 0:
            raise ValueError(f"rssi_std must be positive, got {self.rssi_std}")

        if self.position_covariance is not None:
            cov = np.asarray(self.position_covariance, dtype=float)
            d = position.shape[0]
            if cov.shape != (d, d):
                raise ValueError(
                    f"position_covariance must have shape ({d}, {d}), got {cov.shape}"
                )
            object.__setattr__(self, "position_covariance", cov)

    @property
    def dims(self) -> int:
        """Number of dimensions of the sensor position."""
        return self.position.shape[0]

    @property
    def has_ranging(self) -> bool:
        return self.distance is not None

    @property
    def has_rssi(self) -> bool:
        return self.rssi is not None

    def ranging_only(self) -> "Reading":
        """Return a copy of this reading without its RSSI measurement."""
        if not self.has_ranging:
            raise ValueError("reading has no distance")
        return replace(self, rssi=None, rssi_std=None)

    def rssi_only(self) -> "Reading":
        """Return a copy of this reading without its ranging measurement."""
        if not self.has_rssi:
            raise ValueError("reading has no rssi")
        return replace(self, distance=None, distance_std=None)


@dataclass(frozen=True, eq=False)
class LocatedRadioSource:
    """
    Radio source together with its estimated location and power.

    The input source object is kept untouched in ``source`` so that any
    source-specific metadata (BSSID, SSID, beacon identifiers) travels with
    the estimate.

    Attributes:
        source: Radio source that was estimated.
        position: Estimated position, shape (d,).
        position_covariance: Covariance of ``position``, or None.
        transmitted_power_dbm: Estimated transmitted power in dBm, or None
                               when power is not part of the estimate.
        transmitted_power_std: Standard deviation of the power in dB, or None.
        path_loss_exponent: Path-loss exponent used or estimated, or None.
        path_loss_exponent_std: Standard deviation of the exponent, or None.
    """

    source: Any
    position: Position
    position_covariance: Optional[Covariance] = None
    transmitted_power_dbm: Optional[float] = None
    transmitted_power_std: Optional[float] = None
    path_loss_exponent: Optional[float] = None
    path_loss_exponent_std: Optional[float] = None

    @property
    def frequency(self) -> Optional[float]:
        return getattr(self.source, "frequency", None)

    @property
    def has_power(self) -> bool:
        return self.transmitted_power_dbm is not None

    @property
    def transmitted_power(self) -> Optional[float]:
        """Transmitted power in mW, or None."""
        if self.transmitted_power_dbm is None:
            return None
        return float(10.0 ** (self.transmitted_power_dbm / 10.0))


def locate_radio_source(
    source: Any,
    position: Position,
    position_covariance: Optional[Covariance] = None,
    transmitted_power_dbm: Optional[float] = None,
    transmitted_power_variance: Optional[float] = None,
    path_loss_exponent: Optional[float] = None,
    path_loss_exponent_variance: Optional[float] = None,
) -> LocatedRadioSource:
    """
    Attach an estimated location (and optionally power) to a radio source.

    Args:
        source: Radio source that was estimated.
        position: Estimated position.
        position_covariance: Optional position covariance.
        transmitted_power_dbm: Optional transmitted power in dBm.
        transmitted_power_variance: Optional variance of the power (dB²).
        path_loss_exponent: Optional path-loss exponent.
        path_loss_exponent_variance: Optional variance of the exponent.

    Returns:
        LocatedRadioSource with variances converted to standard deviations.
    """
    power_std = None
    if transmitted_power_variance is not None:
        power_std = float(np.sqrt(transmitted_power_variance))
    exponent_std = None
    if path_loss_exponent_variance is not None:
        exponent_std = float(np.sqrt(path_loss_exponent_variance))

    return LocatedRadioSource(
        source=source,
        position=np.asarray(position, dtype=float).copy(),
        position_covariance=position_covariance,
        transmitted_power_dbm=transmitted_power_dbm,
        transmitted_power_std=power_std,
        path_loss_exponent=path_loss_exponent,
        path_loss_exponent_std=exponent_std,
    )
