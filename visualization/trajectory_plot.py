# visualization/trajectory_plot.py

import numpy as np
import matplotlib.pyplot as plt


class TrajectoryPlot:
    """
    Raw GPS fixes vs. filtered trajectory for one device.

    - x axis: Longitude (deg)
    - y axis: Latitude (deg)

    Aspect is corrected by cos(lat) so a meter is the same length on both
    axes near the track.
    """

    def __init__(self, title: str = "GPS track", live: bool = False):
        self.title = title
        self.live = bool(live)
        self.fig, self.ax = plt.subplots(figsize=(8, 8))
        self.raw_scatter = None
        self.filtered_line = None

        if self.live:
            plt.ion()

    def update(self, raw: np.ndarray, filtered: np.ndarray, title: str | None = None):
        """
        raw, filtered: arrays of shape (N, 2) holding (lon, lat) rows.
        """
        raw = np.asarray(raw, dtype=float).reshape(-1, 2)
        filtered = np.asarray(filtered, dtype=float).reshape(-1, 2)

        if self.raw_scatter is None:
            self.raw_scatter = self.ax.scatter(
                raw[:, 0], raw[:, 1],
                s=8,
                color="tab:gray",
                alpha=0.6,
                label="raw",
            )
            (self.filtered_line,) = self.ax.plot(
                filtered[:, 0], filtered[:, 1],
                color="tab:red",
                linewidth=1.5,
                label="filtered",
            )
            self.ax.legend(loc="best")
        else:
            self.raw_scatter.set_offsets(raw)
            self.filtered_line.set_data(filtered[:, 0], filtered[:, 1])
            self.ax.relim()
            self.ax.autoscale_view()

        pts = np.vstack([raw, filtered]) if raw.size or filtered.size else np.empty((0, 2))
        if pts.size:
            mean_lat = float(np.mean(pts[:, 1]))
            self.ax.set_aspect(1.0 / np.cos(np.radians(mean_lat)))

        self.ax.set_title(title or self.title)
        self.ax.set_xlabel("Longitude (deg)")
        self.ax.set_ylabel("Latitude (deg)")

        self.fig.canvas.draw_idle()
        if self.live:
            plt.pause(0.001)

    def save(self, path: str):
        self.fig.savefig(path, dpi=120)

    def close(self):
        if self.live:
            plt.ioff()
            plt.show()
        else:
            plt.close(self.fig)
