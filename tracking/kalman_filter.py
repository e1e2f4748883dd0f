# tracking/kalman_filter.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any, Dict, Optional

from tracking import linalg2x2 as la
from tracking.noise_model import measurement_noise, process_noise
from tracking.state import (
    FilterState,
    InvalidMeasurementError,
    Position,
    initial_state,
    validate_position,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterConfig:
    sigma_m: float = 5.0               # measurement std-dev in meters at HDOP 1.0
    process_noise_rate: float = 1e-5   # degree^2 per second
    initial_variance: float = 0.001    # diagonal of the first covariance, degree^2
    min_dt_s: float = 1.0              # updates closer than this are not fused

    def __post_init__(self):
        if self.sigma_m < 0:
            raise ValueError(f"sigma_m must be >= 0, got {self.sigma_m}")
        if self.process_noise_rate < 0:
            raise ValueError(f"process_noise_rate must be >= 0, got {self.process_noise_rate}")
        if self.initial_variance <= 0:
            raise ValueError(f"initial_variance must be > 0, got {self.initial_variance}")
        if self.min_dt_s < 0:
            raise ValueError(f"min_dt_s must be >= 0, got {self.min_dt_s}")


def as_config(config: FilterConfig | Dict[str, Any] | None) -> FilterConfig:
    if config is None:
        return FilterConfig()
    if isinstance(config, dict):
        return FilterConfig(**config)
    return config


class StepOutcome(Enum):
    INITIALIZED = "initialized"
    UPDATED = "updated"
    SHORT_CIRCUIT = "short_circuit"
    SINGULAR = "singular"
    REJECTED = "rejected"


@dataclass(frozen=True)
class StepResult:
    """
    Outcome of feeding one measurement to the filter.

    `state` is the prior, unchanged, for SHORT_CIRCUIT, SINGULAR and
    REJECTED. It is None only for a REJECTED first observation.
    """
    state: Optional[FilterState]
    outcome: StepOutcome
    measurement: Optional[Position] = None
    error: Optional[Exception] = None

    @property
    def accepted(self) -> bool:
        return self.outcome is not StepOutcome.REJECTED

    @property
    def fused(self) -> bool:
        return self.outcome in (StepOutcome.INITIALIZED, StepOutcome.UPDATED)


def kalman_step(
    prior: FilterState,
    measurement: Position,
    sigma_m: float = 5.0,
    process_noise_rate: float = 1e-5,
    min_dt_s: float = 1.0,
) -> StepResult:
    """
    One predict + update cycle with an identity motion model.

    State:
      x = [lat, lon]^T
    Measurement:
      z = [lat, lon]^T   (H = I)

    Pure: never mutates `prior`. Raises InvalidMeasurementError for
    measurements older than the prior or at polar latitudes; a singular
    innovation covariance is reported as StepOutcome.SINGULAR.
    """
    validate_position(measurement)

    dt = (measurement.timestamp - prior.timestamp).total_seconds()
    if dt < 0:
        raise InvalidMeasurementError(
            f"device {measurement.device_id}: measurement at {measurement.timestamp} "
            f"is older than state at {prior.timestamp}"
        )
    if dt < min_dt_s:
        logger.debug("device %s: dt=%.3fs below %.3fs, keeping prior",
                     measurement.device_id, dt, min_dt_s)
        return StepResult(prior, StepOutcome.SHORT_CIRCUIT, measurement)

    F = la.identity(2)
    H = la.identity(2)
    R = measurement_noise(prior.lat, measurement.hdop, sigma_m)
    Q = process_noise(dt, process_noise_rate)

    # Predict
    x_pred = prior.x
    P_pred = la.add(la.multiply(la.multiply(F, prior.P), la.transpose(F)), Q)

    # Innovation
    y = measurement.z - x_pred
    S = la.add(la.multiply(la.multiply(H, P_pred), la.transpose(H)), R)

    try:
        S_inv = la.invert(S)
    except la.SingularMatrixError:
        logger.warning("device %s: cannot invert innovation covariance %s, keeping prior",
                       measurement.device_id, S.tolist())
        return StepResult(prior, StepOutcome.SINGULAR, measurement)

    # Update
    K = la.multiply(la.multiply(P_pred, la.transpose(H)), S_inv)
    x_new = x_pred + la.multiply(K, y)
    P_new = la.multiply(la.subtract(la.identity(2), la.multiply(K, H)), P_pred)

    state = FilterState(
        lat=float(x_new[0]),
        lon=float(x_new[1]),
        P=P_new,
        timestamp=measurement.timestamp,
    )
    return StepResult(state, StepOutcome.UPDATED, measurement)


def step_with_config(
    prior: FilterState,
    measurement: Position,
    config: FilterConfig | Dict[str, Any] | None = None,
) -> StepResult:
    cfg = as_config(config)
    return kalman_step(
        prior,
        measurement,
        sigma_m=cfg.sigma_m,
        process_noise_rate=cfg.process_noise_rate,
        min_dt_s=cfg.min_dt_s,
    )


def advance(
    prior: Optional[FilterState],
    measurement: Position,
    config: FilterConfig | Dict[str, Any] | None = None,
) -> StepResult:
    """
    Shared recursion for the on-line and off-line paths.

    No prior -> initialize from the measurement. Otherwise one filter
    step. Invalid measurements come back as REJECTED with the prior kept.
    """
    cfg = as_config(config)
    try:
        if prior is None:
            state = initial_state(measurement, cfg.initial_variance)
            logger.debug("device %s: track initialized at %s", measurement.device_id, measurement.timestamp)
            return StepResult(state, StepOutcome.INITIALIZED, measurement)
        return step_with_config(prior, measurement, cfg)
    except InvalidMeasurementError as exc:
        logger.warning("rejected measurement: %s", exc)
        return StepResult(prior, StepOutcome.REJECTED, measurement, error=exc)

