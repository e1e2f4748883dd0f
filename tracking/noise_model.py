# tracking/noise_model.py
"""
Noise covariances in degree^2, ordered [lat, lon].

Planar approximation: one degree of latitude is taken as 111320 m
everywhere, one degree of longitude as 111320 * cos(lat) m. Not
geodesically exact, and undefined at the poles (|lat| == 90), which are
rejected as unsupported input.
"""
from __future__ import annotations
import math
import numpy as np

from tracking.state import InvalidMeasurementError, normalize_hdop


METERS_PER_DEGREE = 111320.0


def _lat_cos(lat: float) -> float:
    lat = float(lat)
    if not math.isfinite(lat) or abs(lat) >= 90.0:
        raise InvalidMeasurementError(f"latitude {lat} is unsupported for the noise model")
    return math.cos(math.radians(lat))


def measurement_sigmas(lat: float, hdop: float | None, sigma_m: float) -> tuple[float, float]:
    """
    Returns (sigma_lat, sigma_lon) in degrees for a fix near `lat`.
    """
    hdop = normalize_hdop(hdop)
    lat_cos = _lat_cos(lat)
    sigma_lat = (sigma_m * hdop) / METERS_PER_DEGREE
    sigma_lon = (sigma_m * hdop) / (METERS_PER_DEGREE * lat_cos)
    # products overflow to inf instead of raising like float ** 2
    if not (math.isfinite(sigma_lat * sigma_lat) and math.isfinite(sigma_lon * sigma_lon)):
        raise InvalidMeasurementError(
            f"measurement noise overflows for sigma_m={sigma_m}, hdop={hdop}, lat={lat}"
        )
    return sigma_lat, sigma_lon


def measurement_noise(lat: float, hdop: float | None, sigma_m: float) -> np.ndarray:
    """R = diag(sigma_lat^2, sigma_lon^2)."""
    sigma_lat, sigma_lon = measurement_sigmas(lat, hdop, sigma_m)
    return np.diag([sigma_lat ** 2, sigma_lon ** 2]).astype(float)


def process_noise(dt: float, rate: float) -> np.ndarray:
    """Q = diag(rate * dt, rate * dt); uncertainty grows linearly with elapsed time."""
    if dt < 0:
        raise InvalidMeasurementError(f"negative elapsed time {dt}s")
    q = float(rate) * float(dt)
    return np.diag([q, q]).astype(float)


def distance_m(lat0: float, lon0: float, lat1: float, lon1: float) -> float:
    """Planar distance in meters between two nearby fixes."""
    lat_cos = _lat_cos(lat0)
    dy = (lat1 - lat0) * METERS_PER_DEGREE
    dx = (lon1 - lon0) * METERS_PER_DEGREE * lat_cos
    return float(math.hypot(dx, dy))
