# demo_gps_tracking.py
import logging

from processing.pipeline import PositionIngestor, compare_with_log
from processing.stream_processor import filter_track
from simulation.track_generator import generate_scenario, TrackGenerator
from visualization.trajectory_plot import TrajectoryPlot

from diagnostics.metrics import (
    MetricsRegistry,
    STEPS_UPDATED,
    STEPS_SHORT_CIRCUIT,
    SINGULAR_FALLBACKS,
    MEASUREMENTS_REJECTED,
    STEP_LATENCY,
)


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


# -----------------------------
# Scenario: 200 fixes, 10 s apart, random walk around Zurich
# -----------------------------
scenario = generate_scenario({
    "rng_seed": 42,
    "tracks": [
        {"device_id": 1, "start_time": "2025-09-09T12:00:00Z", "origin_lon": 8.5417, "origin_lat": 47.3769},
        {"device_id": 2, "start_time": "2025-09-09T12:00:00Z", "origin_lon": 8.5500, "origin_lat": 47.3700},
    ],
})
tracks = TrackGenerator(scenario).generate_tracks()

filter_config = {"sigma_m": 5.0, "process_noise_rate": 1e-5, "initial_variance": 0.001}


# -----------------------------
# On-line: ingest fix by fix
# -----------------------------
metrics = MetricsRegistry(window_size=500)
ingestor = PositionIngestor(config=filter_config, metrics=metrics)

for i in range(max(len(t) for t in tracks.values())):
    for device_id, track in tracks.items():
        if i < len(track):
            ingestor.ingest([track[i]])

    if i % 50 == 0:
        snap = metrics.snapshot()
        mean_us = 1e6 * snap["timers"].get(STEP_LATENCY, {}).get("mean_s", 0.0)
        print(
            f"[fix={i:03d}] updated={snap['counters'].get(STEPS_UPDATED, 0)} "
            f"short={snap['counters'].get(STEPS_SHORT_CIRCUIT, 0)} "
            f"singular={snap['counters'].get(SINGULAR_FALLBACKS, 0)} "
            f"rejected={snap['counters'].get(MEASUREMENTS_REJECTED, 0)} "
            f"step_mean={mean_us:.1f}us"
        )


# -----------------------------
# Off-line: replay stored track, compare with on-line output
# -----------------------------
for device_id in ingestor.log.device_ids():
    replay = compare_with_log(ingestor.log, device_id, config=filter_config)
    worst = max((r.diff_m for r in replay if r.diff_m is not None), default=0.0)
    final = filter_track(ingestor.log.positions(device_id), config=filter_config).final()
    print(
        f"device {device_id}: rows={len(replay)} max_online_offline_diff={worst:.3e} m "
        f"final=({final.lat:.6f}, {final.lon:.6f}) trace(P)={final.trace:.3e}"
    )


# -----------------------------
# Plot
# -----------------------------
plotter = TrajectoryPlot(title="Device 1", live=True)
plotter.update(
    ingestor.log.trajectory(1, filtered=False),
    ingestor.log.trajectory(1, filtered=True),
)
plotter.close()
