# simulation/track_generator.py

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import numpy as np
from typing import List, Dict, Optional

from tracking.noise_model import METERS_PER_DEGREE
from tracking.state import Position


@dataclass
class TrackConfig:
    device_id: int
    start_time: datetime
    origin_lon: float          # degrees
    origin_lat: float          # degrees
    num_points: int = 200
    step_s: float = 10.0       # seconds between fixes
    lon_jitter: float = 0.0003 # full width of the per-step lon increment (degrees)
    lat_jitter: float = 0.0002 # full width of the per-step lat increment (degrees)
    hdop_min: float = 0.8
    hdop_max: float = 1.2


@dataclass
class Scenario:
    tracks: List[TrackConfig]
    rng_seed: Optional[int] = None


def _parse_time(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def generate_scenario(config: Dict) -> Scenario:
    """
    Builds a simulation scenario from a configuration dictionary.

    {"rng_seed": 1, "tracks": [{"device_id": 1, "start_time": "2025-09-09T12:00:00Z",
                                "origin_lon": 8.5417, "origin_lat": 47.3769, ...}]}
    """
    tracks = []
    for trk in config["tracks"]:
        trk = dict(trk)
        trk["start_time"] = _parse_time(trk["start_time"])
        tracks.append(TrackConfig(**trk))
    return Scenario(tracks=tracks, rng_seed=config.get("rng_seed"))


class TrackGenerator:
    def __init__(self, scenario: Scenario):
        self.scenario = scenario
        self.rng = np.random.default_rng(scenario.rng_seed)

    def generate_random_walk(self, cfg: TrackConfig) -> List[Position]:
        """
        Random walk: each fix moves the previous one by a uniform increment
        in [-jitter/2, +jitter/2] per axis; first fix sits on the origin with
        HDOP 1.0.
        """
        n = int(cfg.num_points)
        if n <= 0:
            return []

        d_lon = (self.rng.random(n - 1) - 0.5) * cfg.lon_jitter
        d_lat = (self.rng.random(n - 1) - 0.5) * cfg.lat_jitter
        lons = cfg.origin_lon + np.concatenate(([0.0], np.cumsum(d_lon)))
        lats = cfg.origin_lat + np.concatenate(([0.0], np.cumsum(d_lat)))
        hdops = np.concatenate(([1.0], cfg.hdop_min + self.rng.random(n - 1) * (cfg.hdop_max - cfg.hdop_min)))

        return [
            Position(
                device_id=cfg.device_id,
                timestamp=cfg.start_time + timedelta(seconds=i * cfg.step_s),
                longitude=float(lons[i]),
                latitude=float(lats[i]),
                hdop=float(hdops[i]),
            )
            for i in range(n)
        ]

    def generate_tracks(self) -> Dict[int, List[Position]]:
        return {cfg.device_id: self.generate_random_walk(cfg) for cfg in self.scenario.tracks}


def static_track(
    device_id: int,
    lat: float,
    lon: float,
    num_points: int,
    step_s: float = 10.0,
    hdop: float = 1.0,
    noise_m: float = 0.0,
    start_time: datetime | None = None,
    rng_seed: int | None = None,
) -> List[Position]:
    """Stationary receiver, optional gaussian noise in meters."""
    rng = np.random.default_rng(rng_seed)
    t0 = datetime(2025, 9, 9, 12, 0, tzinfo=timezone.utc) if start_time is None else start_time
    lat_cos = np.cos(np.radians(lat))
    out = []
    for i in range(num_points):
        dy, dx = rng.normal(0.0, noise_m, 2) if noise_m > 0 else (0.0, 0.0)
        out.append(Position(
            device_id=device_id,
            timestamp=t0 + timedelta(seconds=i * step_s),
            longitude=float(lon + dx / (METERS_PER_DEGREE * lat_cos)),
            latitude=float(lat + dy / METERS_PER_DEGREE),
            hdop=hdop,
        ))
    return out
