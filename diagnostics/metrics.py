# diagnostics/metrics.py
from __future__ import annotations

from collections import deque
import threading
import time
from typing import Dict, Any, Optional

import numpy as np

from tracking.kalman_filter import StepOutcome, StepResult


# -----------------------------
# Metric keys
# -----------------------------
STEPS_UPDATED = "steps_updated_total"
STEPS_SHORT_CIRCUIT = "steps_short_circuit_total"
SINGULAR_FALLBACKS = "singular_fallbacks_total"
MEASUREMENTS_REJECTED = "measurements_rejected_total"
TRACKS_INITIALIZED = "tracks_initialized_total"
FAULTS_INJECTED = "faults_injected_total"
DEVICES_TRACKED = "devices_tracked"
STEP_LATENCY = "step_latency_s"     # one on-line filter step
TRACK_LATENCY = "track_latency_s"   # one whole off-line fold


class _Window:
    """Last `size` timings of one key, in seconds."""

    def __init__(self, size: int):
        self.samples: deque = deque(maxlen=size)

    def summary(self) -> Dict[str, float]:
        n = len(self.samples)
        if n == 0:
            return {"count": 0, "mean_s": 0.0, "p95_s": 0.0, "max_s": 0.0}
        arr = np.fromiter(self.samples, dtype=float, count=n)
        return {
            "count": n,
            "mean_s": float(arr.mean()),
            "p95_s": float(np.percentile(arr, 95, method="lower")),
            "max_s": float(arr.max()),
        }


class MetricsRegistry:
    """
    Small thread-safe metrics registry:
      - counters: monotonically increasing
      - gauges: last value (overwrite)
      - timers: sliding-window timings (seconds)

    Shared by concurrent per-device updates, hence the lock.
    """

    def __init__(self, window_size: int = 200):
        self.window_size = int(window_size)
        self._counters: Dict[str, int] = {}
        self._gauges: Dict[str, float] = {}
        self._timers: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def inc(self, key: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + int(amount)

    def counter(self, key: str) -> int:
        with self._lock:
            return self._counters.get(key, 0)

    def set_gauge(self, key: str, value: float) -> None:
        with self._lock:
            self._gauges[key] = float(value)

    def observe(self, key: str, value_s: float) -> None:
        with self._lock:
            window = self._timers.setdefault(key, _Window(self.window_size))
            window.samples.append(float(value_s))

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "timers": {k: v.summary() for k, v in self._timers.items()},
            }


class Timer:
    """
    Times a `with` block into `metrics` under `key`. The measured
    duration stays readable as `elapsed_s` after the block exits, also
    when the block raised.
    """

    def __init__(self, metrics: MetricsRegistry, key: str):
        self.metrics = metrics
        self.key = key
        self.elapsed_s: Optional[float] = None
        self._started: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.elapsed_s = time.perf_counter() - self._started
        self.metrics.observe(self.key, self.elapsed_s)


def record_step(metrics: MetricsRegistry | None, result: StepResult) -> None:
    """Count one StepResult by outcome."""
    if metrics is None:
        return
    key = {
        StepOutcome.INITIALIZED: TRACKS_INITIALIZED,
        StepOutcome.UPDATED: STEPS_UPDATED,
        StepOutcome.SHORT_CIRCUIT: STEPS_SHORT_CIRCUIT,
        StepOutcome.SINGULAR: SINGULAR_FALLBACKS,
        StepOutcome.REJECTED: MEASUREMENTS_REJECTED,
    }[result.outcome]
    metrics.inc(key, 1)
