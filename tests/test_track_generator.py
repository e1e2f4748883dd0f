from datetime import datetime, timedelta, timezone

import numpy as np
from simulation.track_generator import generate_scenario, TrackGenerator, static_track


CONFIG = {
    "rng_seed": 42,
    "tracks": [
        {
            "device_id": 1,
            "start_time": "2025-09-09T12:00:00Z",
            "origin_lon": 8.5417,
            "origin_lat": 47.3769,
        },
        {
            "device_id": 2,
            "start_time": datetime(2025, 9, 9, 13, 0, tzinfo=timezone.utc),
            "origin_lon": 8.55,
            "origin_lat": 47.37,
            "num_points": 5,
            "step_s": 1.0,
        },
    ],
}


def test_generate_scenario_basic():
    scenario = generate_scenario(CONFIG)

    assert scenario.rng_seed == 42
    assert len(scenario.tracks) == 2
    assert scenario.tracks[0].start_time == datetime(2025, 9, 9, 12, 0, tzinfo=timezone.utc)
    assert scenario.tracks[0].num_points == 200
    assert scenario.tracks[1].step_s == 1.0


def test_random_walk_shape_and_timing():
    scenario = generate_scenario(CONFIG)
    tracks = TrackGenerator(scenario).generate_tracks()

    trk = tracks[1]
    assert len(trk) == 200
    assert (trk[0].longitude, trk[0].latitude, trk[0].hdop) == (8.5417, 47.3769, 1.0)
    assert trk[-1].timestamp - trk[0].timestamp == timedelta(seconds=1990)

    lons = np.array([p.longitude for p in trk])
    lats = np.array([p.latitude for p in trk])
    assert np.all(np.abs(np.diff(lons)) <= 0.00015 + 1e-12)
    assert np.all(np.abs(np.diff(lats)) <= 0.0001 + 1e-12)
    assert all(0.8 <= p.hdop <= 1.2 for p in trk[1:])

    assert len(tracks[2]) == 5
    assert all(p.device_id == 2 for p in tracks[2])


def test_same_seed_same_tracks():
    a = TrackGenerator(generate_scenario(CONFIG)).generate_tracks()
    b = TrackGenerator(generate_scenario(CONFIG)).generate_tracks()
    assert a == b


def test_static_track_without_noise_is_constant():
    trk = static_track(3, 47.0, 8.0, num_points=4, step_s=5.0, hdop=2.0)
    assert [(p.latitude, p.longitude, p.hdop) for p in trk] == [(47.0, 8.0, 2.0)] * 4
    assert trk[3].timestamp - trk[0].timestamp == timedelta(seconds=15)


def test_static_track_noise_level():
    trk = static_track(3, 47.0, 8.0, num_points=2000, noise_m=5.0, rng_seed=0)
    dy = (np.array([p.latitude for p in trk]) - 47.0) * 111320.0
    assert abs(np.std(dy) - 5.0) < 0.5
