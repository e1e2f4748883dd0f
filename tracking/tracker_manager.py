# tracking/tracker_manager.py

from __future__ import annotations
import logging
from typing import Any, Callable, Dict, Iterable, Optional
from datetime import datetime

from diagnostics.metrics import (
    MetricsRegistry,
    Timer,
    DEVICES_TRACKED,
    STEP_LATENCY,
    record_step,
)
from storage.device_store import InMemoryDeviceStore, StaleStateError
from tracking.kalman_filter import FilterConfig, StepResult, advance, as_config
from tracking.state import FilterState, Position


logger = logging.getLogger(__name__)

# (device_id, timestamp, filtered_longitude, filtered_latitude)
FilteredSink = Callable[[int, datetime, float, float], Any]


class TrackerManager:
    """
    On-line filtering: one persisted FilterState per device, advanced by
    exactly one filter step per incoming measurement.

      - first fix of a device initializes its state (no filter step)
      - later fixes run kalman_step against the stored state
      - rejected fixes leave the stored state untouched
      - short-circuited / singular steps keep the stored state as is

    Each read-step-write cycle holds the device's lock in the store, so
    concurrent callers never lose an update. Different devices proceed
    in parallel.
    """

    def __init__(
        self,
        store: InMemoryDeviceStore | None = None,
        config: FilterConfig | Dict[str, Any] | None = None,
        sink: FilteredSink | None = None,
        metrics: MetricsRegistry | None = None,
    ):
        self.store = InMemoryDeviceStore() if store is None else store
        self.config = as_config(config)
        self.sink = sink
        self.metrics = metrics

    def state(self, device_id: int) -> Optional[FilterState]:
        return self.store.get(device_id)

    def step(
        self,
        measurement: Position,
        config: FilterConfig | Dict[str, Any] | None = None,
    ) -> StepResult:
        cfg = self.config if config is None else as_config(config)
        device_id = measurement.device_id

        with self.store.locked(device_id):
            prior = self.store.get(device_id)
            result = self._advance(prior, measurement, cfg)
            if result.fused:
                self.store.set(device_id, result.state)
            self._emit(result)

        self._observe(result)
        return result

    def step_optimistic(
        self,
        measurement: Position,
        config: FilterConfig | Dict[str, Any] | None = None,
        max_retries: int = 5,
    ) -> StepResult:
        """
        Lock-free variant: compute against a versioned read, publish with
        compare_and_set, recompute on conflict.
        """
        cfg = self.config if config is None else as_config(config)
        device_id = measurement.device_id

        for attempt in range(max_retries + 1):
            entry = self.store.get_versioned(device_id)
            prior = None if entry is None else entry.state
            version = 0 if entry is None else entry.version

            result = self._advance(prior, measurement, cfg)
            if not result.fused:
                break
            try:
                self.store.compare_and_set(device_id, version, result.state)
                break
            except StaleStateError:
                logger.debug("device %s: concurrent update, retry %d", device_id, attempt + 1)
        else:
            raise StaleStateError(f"device {device_id}: gave up after {max_retries} retries")

        self._emit(result)
        self._observe(result)
        return result

    def step_many(self, measurements: Iterable[Position]) -> list[StepResult]:
        """
        measurements: fixes in arrival order, any mix of devices
        """
        return [self.step(m) for m in measurements]

    def _advance(self, prior, measurement, cfg) -> StepResult:
        if self.metrics is None:
            return advance(prior, measurement, cfg)
        with Timer(self.metrics, STEP_LATENCY):
            return advance(prior, measurement, cfg)

    def _emit(self, result: StepResult) -> None:
        if self.sink is None or not result.accepted:
            return
        m = result.measurement
        self.sink(m.device_id, m.timestamp, result.state.lon, result.state.lat)

    def _observe(self, result: StepResult) -> None:
        if self.metrics is None:
            return
        record_step(self.metrics, result)
        self.metrics.set_gauge(DEVICES_TRACKED, len(self.store))
