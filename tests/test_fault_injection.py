# tests/test_fault_injection.py
from datetime import datetime, timezone

import math

from diagnostics.fault_injection import FaultInjector, FaultConfig
from simulation.track_generator import static_track
from tracking.noise_model import distance_m
from tracking.state import Position


FIX = Position(1, datetime(2025, 9, 9, 12, 0, tzinfo=timezone.utc), 8.5417, 47.3769, 1.0)


def test_drop_fix_returns_none_when_enabled():
    cfg = FaultConfig(enabled=True, drop_fixes=1.0, rng_seed=123)
    fi = FaultInjector(cfg)
    assert fi.maybe_drop(FIX) is None


def test_outlier_moves_fix_by_configured_distance():
    fi = FaultInjector({"enabled": True, "outlier_prob": 1.0, "outlier_m": 50.0, "rng_seed": 123})
    out, injected = fi.maybe_outlier(FIX)
    assert injected
    assert abs(distance_m(FIX.latitude, FIX.longitude, out.latitude, out.longitude) - 50.0) < 0.5


def test_hdop_spike_and_corrupt():
    fi = FaultInjector(FaultConfig(enabled=True, hdop_spike_prob=1.0, hdop_spike_value=9.0, corrupt_prob=1.0))
    spiked, hit = fi.maybe_hdop_spike(FIX)
    assert hit and spiked.hdop == 9.0

    bad, hit = fi.maybe_corrupt(FIX)
    assert hit and math.isnan(bad.latitude)


def test_disabled_injector_is_a_no_op():
    fixes = static_track(1, 47.3769, 8.5417, num_points=20)
    fi = FaultInjector(FaultConfig(enabled=False, drop_fixes=1.0, swap_prob=1.0))
    out, injected = fi.apply(fixes)
    assert out == fixes
    assert injected == 0


def test_drop_all_fixes_empties_track():
    fixes = static_track(1, 47.3769, 8.5417, num_points=10)
    fi = FaultInjector(FaultConfig(enabled=True, drop_fixes=1.0, rng_seed=123))
    out, injected = fi.apply(fixes)
    assert out == []
    assert injected == 10


def test_duplicates_and_swaps_keep_every_fix():
    fixes = static_track(1, 47.3769, 8.5417, num_points=10)
    fi = FaultInjector(FaultConfig(enabled=True, duplicate_prob=1.0, swap_prob=1.0, rng_seed=1))
    out, injected = fi.apply(fixes)

    assert len(out) == 20
    # 10 duplicates + 10 adjacent swaps
    assert injected == 20
    assert sorted(out, key=lambda p: p.timestamp)[1].timestamp == fixes[0].timestamp.replace(microsecond=500000)
