# demos/demo_track_fault_injection.py
import logging

import numpy as np

from processing.pipeline import process_track
from simulation.track_generator import static_track
from visualization.trajectory_plot import TrajectoryPlot

from diagnostics.metrics import (
    MetricsRegistry,
    STEPS_UPDATED,
    STEPS_SHORT_CIRCUIT,
    MEASUREMENTS_REJECTED,
    FAULTS_INJECTED,
)
from diagnostics.fault_injection import FaultInjector, FaultConfig
from tracking.noise_model import distance_m


logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")


# -----------------------------
# Stationary receiver, 5 m noise
# -----------------------------
true_lat, true_lon = 47.3769, 8.5417
fixes = static_track(1, true_lat, true_lon, num_points=300, noise_m=5.0, rng_seed=7)


# -----------------------------
# Metrics + Fault Injection
# -----------------------------
metrics = MetricsRegistry(window_size=200)

fault_injector = FaultInjector(FaultConfig(
    enabled=True,
    rng_seed=123,
    drop_fixes=0.05,
    hdop_spike_prob=0.05,
    hdop_spike_value=10.0,
    outlier_prob=0.03,
    outlier_m=80.0,
    duplicate_prob=0.05,
    corrupt_prob=0.01,
    swap_prob=0.02,
))


# -----------------------------
# Filter
# -----------------------------
results = process_track(fixes, {"sigma_m": 5.0}, metrics=metrics, fault_injector=fault_injector)

snap = metrics.snapshot()
print(
    f"faults={snap['counters'].get(FAULTS_INJECTED, 0)} "
    f"updated={snap['counters'].get(STEPS_UPDATED, 0)} "
    f"short={snap['counters'].get(STEPS_SHORT_CIRCUIT, 0)} "
    f"rejected={snap['counters'].get(MEASUREMENTS_REJECTED, 0)}"
)

accepted = [r for r in results if r.accepted]
raw_err = [distance_m(true_lat, true_lon, r.measurement.latitude, r.measurement.longitude) for r in accepted]
est_err = [distance_m(true_lat, true_lon, r.state.lat, r.state.lon) for r in accepted]
print(f"mean error raw={np.mean(raw_err):.2f} m filtered={np.mean(est_err):.2f} m")


# -----------------------------
# Plot
# -----------------------------
plotter = TrajectoryPlot(title="Stationary receiver with injected faults", live=True)
plotter.update(
    np.array([(r.measurement.longitude, r.measurement.latitude) for r in accepted]),
    np.array([(r.state.lon, r.state.lat) for r in accepted]),
)
plotter.close()
