"""Robust radio-source position and power estimation.

This package contains the components needed to locate a radio source
(Wi-Fi access point, BLE beacon) from readings taken at known positions:
- types: Readings, radio sources and located results
- rf: Radio measurement models and lateration solvers
- estimators: Linear and nonlinear least squares
- robust: Robust sampling engine (RANSAC, LMedS, MSAC, PROSAC, PROMedS)
- locating: Radio source estimators (ranging, RSSI, ranging+RSSI, mixed, sequential)
"""

__version__ = "0.1.0"
