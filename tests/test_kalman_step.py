# tests/test_kalman_step.py
from datetime import datetime, timedelta, timezone
import logging

import numpy as np
import pytest

from tracking.kalman_filter import (
    FilterConfig,
    StepOutcome,
    advance,
    as_config,
    kalman_step,
    step_with_config,
)
from tracking.state import FilterState, InvalidMeasurementError, Position, initial_state


T0 = datetime(2025, 9, 9, 12, 0, 0, tzinfo=timezone.utc)


def _prior(lat=47.3769, lon=8.5417, P=None, t=T0):
    return FilterState(lat=lat, lon=lon, P=np.eye(2) * 0.001 if P is None else P, timestamp=t)


def _fix(lat=47.3772, lon=8.5421, dt_s=10.0, hdop=1.0, device_id=1):
    return Position(device_id, T0 + timedelta(seconds=dt_s), lon, lat, hdop)


def test_zurich_fix_is_partially_corrected():
    prior = _prior()
    fix = _fix()

    result = kalman_step(prior, fix, sigma_m=5.0)
    assert result.outcome is StepOutcome.UPDATED
    est = result.state

    # strictly between prior and raw fix
    assert prior.lat < est.lat < fix.latitude
    assert prior.lon < est.lon < fix.longitude

    # uncertainty reduced below the predicted covariance
    P_pred = prior.P + np.eye(2) * 1e-5 * 10.0
    assert est.P[0, 0] < P_pred[0, 0]
    assert est.P[1, 1] < P_pred[1, 1]

    assert est.timestamp == fix.timestamp


def test_higher_hdop_moves_estimate_less():
    prior = _prior()
    good = kalman_step(prior, _fix(hdop=1.0), sigma_m=5.0).state
    poor = kalman_step(prior, _fix(hdop=5.0), sigma_m=5.0).state

    assert abs(poor.lat - prior.lat) < abs(good.lat - prior.lat)
    assert abs(poor.lon - prior.lon) < abs(good.lon - prior.lon)


@pytest.mark.parametrize("dt_s", [0.0, 0.25, 0.999])
def test_sub_second_update_returns_prior_unchanged(dt_s):
    prior = _prior(P=np.array([[2e-3, 1e-4], [1e-4, 3e-3]]))
    result = kalman_step(prior, _fix(dt_s=dt_s), sigma_m=5.0)

    assert result.outcome is StepOutcome.SHORT_CIRCUIT
    assert result.state is prior
    np.testing.assert_array_equal(result.state.P, prior.P)
    assert result.state.lat == prior.lat and result.state.lon == prior.lon


def test_min_dt_is_configurable():
    prior = _prior()
    result = step_with_config(prior, _fix(dt_s=0.5), {"min_dt_s": 0.1})
    assert result.outcome is StepOutcome.UPDATED


def test_repeated_fix_converges_and_trace_never_grows():
    target = _fix(dt_s=0.0)
    state = _prior()
    dist = [abs(state.lat - target.latitude) + abs(state.lon - target.longitude)]
    traces = [state.trace]

    for k in range(1, 21):
        fix = Position(1, T0 + timedelta(seconds=10 * k), target.longitude, target.latitude, 1.0)
        state = kalman_step(state, fix, sigma_m=5.0).state
        dist.append(abs(state.lat - target.latitude) + abs(state.lon - target.longitude))
        traces.append(state.trace)

    for a, b in zip(dist, dist[1:]):
        assert b <= a + 1e-13
    for a, b in zip(traces, traces[1:]):
        assert b <= a * (1.0 + 1e-9)

    assert dist[-1] < 1e-9


def test_converges_with_large_measurement_noise():
    # sigma 500 m keeps the gain well below 1, so convergence takes many steps
    state = _prior(lat=47.0, lon=8.0)
    for k in range(1, 200):
        fix = Position(1, T0 + timedelta(seconds=10 * k), 8.001, 47.001, 1.0)
        prev = state
        state = kalman_step(state, fix, sigma_m=500.0, process_noise_rate=1e-9).state
        assert abs(state.lat - 47.001) <= abs(prev.lat - 47.001)
    assert state.lat == pytest.approx(47.001, abs=1e-5)


def test_singular_innovation_covariance_keeps_prior(caplog):
    # sigma_m=0 and no process noise -> S == P, which is rank deficient
    prior = _prior(P=np.array([[1.0, 1.0], [1.0, 1.0]]))

    with caplog.at_level(logging.WARNING, logger="tracking.kalman_filter"):
        result = kalman_step(prior, _fix(), sigma_m=0.0, process_noise_rate=0.0)

    assert result.outcome is StepOutcome.SINGULAR
    assert result.state is prior
    assert result.accepted and not result.fused
    assert any("cannot invert" in rec.getMessage() for rec in caplog.records)


def test_older_measurement_is_invalid():
    prior = _prior(t=T0 + timedelta(seconds=60))
    with pytest.raises(InvalidMeasurementError):
        kalman_step(prior, _fix(dt_s=10.0), sigma_m=5.0)

    result = advance(prior, _fix(dt_s=10.0))
    assert result.outcome is StepOutcome.REJECTED
    assert result.state is prior
    assert isinstance(result.error, InvalidMeasurementError)


def test_polar_prior_is_invalid():
    prior = _prior(lat=90.0)
    with pytest.raises(InvalidMeasurementError):
        kalman_step(prior, _fix(lat=89.9), sigma_m=5.0)


def test_step_is_pure_and_deterministic():
    prior = _prior()
    fix = _fix()
    P_before = prior.P.copy()

    a = kalman_step(prior, fix, sigma_m=5.0).state
    b = kalman_step(prior, fix, sigma_m=5.0).state

    assert a == b
    np.testing.assert_array_equal(prior.P, P_before)
    assert prior.lat == 47.3769


def test_covariance_stays_symmetric():
    prior = _prior(P=np.array([[2e-3, 5e-4], [5e-4, 1e-3]]))
    P = kalman_step(prior, _fix(), sigma_m=5.0).state.P
    assert P[0, 1] == pytest.approx(P[1, 0], rel=1e-9, abs=1e-20)


def test_initialization_from_first_fix():
    fix = _fix(hdop=None)
    state = initial_state(fix, 0.001)

    assert state.lat == fix.latitude
    assert state.lon == fix.longitude
    assert state.timestamp == fix.timestamp
    np.testing.assert_array_equal(state.P, np.diag([0.001, 0.001]))

    result = advance(None, fix, {"initial_variance": 0.002})
    assert result.outcome is StepOutcome.INITIALIZED
    np.testing.assert_array_equal(result.state.P, np.diag([0.002, 0.002]))


def test_rejected_first_fix_has_no_state():
    result = advance(None, _fix(lat=float("nan")))
    assert result.outcome is StepOutcome.REJECTED
    assert result.state is None


def test_filter_config_validation_and_coercion():
    assert as_config(None) == FilterConfig()
    assert as_config({"sigma_m": 3.0}).sigma_m == 3.0
    cfg = FilterConfig(sigma_m=2.0)
    assert as_config(cfg) is cfg

    with pytest.raises(ValueError):
        FilterConfig(sigma_m=-1.0)
    with pytest.raises(ValueError):
        FilterConfig(initial_variance=0.0)


def test_filter_state_document_round_trip():
    state = kalman_step(_prior(), _fix(), sigma_m=5.0).state
    doc = state.to_dict()

    assert set(doc) == {"lat", "lon", "p", "time"}
    assert FilterState.from_dict(doc) == state


@pytest.mark.parametrize("hdop", [float("inf"), 1e200])
def test_unbounded_hdop_is_rejected_without_touching_prior(hdop):
    prior = _prior()
    with pytest.raises(InvalidMeasurementError):
        kalman_step(prior, _fix(hdop=hdop), sigma_m=5.0)

    result = advance(prior, _fix(hdop=hdop))
    assert result.outcome is StepOutcome.REJECTED
    assert result.state is prior

    first = advance(None, _fix(hdop=hdop))
    assert first.outcome is StepOutcome.REJECTED
    assert first.state is None


def test_nan_hdop_still_falls_back_to_default():
    prior = _prior()
    a = kalman_step(prior, _fix(hdop=float("nan")), sigma_m=5.0)
    b = kalman_step(prior, _fix(hdop=1.0), sigma_m=5.0)
    assert a.outcome is StepOutcome.UPDATED
    assert a.state == b.state
