# tracking/state.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import math
from typing import Any, Dict, Optional

import numpy as np


DEFAULT_HDOP = 1.0


class InvalidMeasurementError(ValueError):
    """A single measurement that cannot be fused without corrupting the filter."""


def normalize_hdop(hdop: Optional[float]) -> float:
    """Missing, NaN or non-positive HDOP falls back to 1.0."""
    if hdop is None:
        return DEFAULT_HDOP
    hdop = float(hdop)
    if math.isnan(hdop) or hdop <= 0.0:
        return DEFAULT_HDOP
    return hdop


@dataclass(frozen=True)
class Position:
    """
    Raw GPS fix as observed. Immutable.
    """
    device_id: int
    timestamp: datetime
    longitude: float
    latitude: float
    hdop: Optional[float] = None

    @property
    def effective_hdop(self) -> float:
        return normalize_hdop(self.hdop)

    @property
    def z(self) -> np.ndarray:
        # measurement vector is ordered [lat, lon] like the filter state
        return np.array([self.latitude, self.longitude], dtype=float)


def validate_position(m: Position) -> None:
    if not (math.isfinite(m.latitude) and math.isfinite(m.longitude)):
        raise InvalidMeasurementError(
            f"device {m.device_id} @ {m.timestamp}: non-finite coordinates "
            f"({m.latitude}, {m.longitude})"
        )
    # cos(lat) -> 0 at the poles makes the longitude noise undefined
    if abs(m.latitude) >= 90.0:
        raise InvalidMeasurementError(
            f"device {m.device_id} @ {m.timestamp}: polar latitude {m.latitude} is unsupported"
        )
    # NaN and non-positive values already fell back to the default
    if not math.isfinite(m.effective_hdop):
        raise InvalidMeasurementError(
            f"device {m.device_id} @ {m.timestamp}: non-finite hdop {m.hdop}"
        )


@dataclass(frozen=True, eq=False)
class FilterState:
    """
    Latest belief about a device position.

    lat/lon in degrees, P is the 2x2 covariance in degree^2 ordered
    [lat, lon], timestamp is the time of the observation that produced it.
    """
    lat: float
    lon: float
    P: np.ndarray
    timestamp: datetime

    def __post_init__(self):
        P = np.array(self.P, dtype=float).reshape(2, 2)
        P.setflags(write=False)
        object.__setattr__(self, "lat", float(self.lat))
        object.__setattr__(self, "lon", float(self.lon))
        object.__setattr__(self, "P", P)

    @property
    def x(self) -> np.ndarray:
        return np.array([self.lat, self.lon], dtype=float)

    @property
    def trace(self) -> float:
        return float(self.P[0, 0] + self.P[1, 1])

    def __eq__(self, other) -> bool:
        if not isinstance(other, FilterState):
            return NotImplemented
        return (
            self.lat == other.lat
            and self.lon == other.lon
            and self.timestamp == other.timestamp
            and np.array_equal(self.P, other.P)
        )

    __hash__ = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lat": self.lat,
            "lon": self.lon,
            "p": self.P.tolist(),
            "time": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, doc: Dict[str, Any]) -> "FilterState":
        return cls(
            lat=float(doc["lat"]),
            lon=float(doc["lon"]),
            P=np.array(doc["p"], dtype=float),
            timestamp=datetime.fromisoformat(doc["time"]),
        )


def initial_state(measurement: Position, initial_variance: float = 0.001) -> FilterState:
    """
    First observation of a track: estimate is the raw fix, covariance is
    a fixed diagonal prior. No filter step is applied.
    """
    validate_position(measurement)
    return FilterState(
        lat=measurement.latitude,
        lon=measurement.longitude,
        P=np.eye(2) * float(initial_variance),
        timestamp=measurement.timestamp,
    )
