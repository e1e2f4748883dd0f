# storage/position_log.py
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
import threading
from typing import Dict, List, Optional, Tuple

import numpy as np

from tracking.state import Position, normalize_hdop


@dataclass(frozen=True)
class LoggedPosition:
    """One row of the position log: the raw fix plus its filtered coordinates."""
    device_id: int
    timestamp: datetime
    longitude: float
    latitude: float
    hdop: float
    filtered_longitude: Optional[float] = None
    filtered_latitude: Optional[float] = None

    def to_position(self) -> Position:
        return Position(
            device_id=self.device_id,
            timestamp=self.timestamp,
            longitude=self.longitude,
            latitude=self.latitude,
            hdop=self.hdop,
        )


class PositionLog:
    """
    In-memory position table keyed by (device_id, timestamp).

    Acts as the measurement source for off-line replay and as the sink
    for filtered output. Writing an existing key replaces the row.
    """

    def __init__(self):
        self._rows: Dict[Tuple[int, datetime], LoggedPosition] = {}
        self._lock = threading.Lock()

    def upsert(
        self,
        position: Position,
        filtered_longitude: Optional[float] = None,
        filtered_latitude: Optional[float] = None,
    ) -> LoggedPosition:
        row = LoggedPosition(
            device_id=position.device_id,
            timestamp=position.timestamp,
            longitude=float(position.longitude),
            latitude=float(position.latitude),
            hdop=normalize_hdop(position.hdop),
            filtered_longitude=filtered_longitude,
            filtered_latitude=filtered_latitude,
        )
        with self._lock:
            self._rows[(row.device_id, row.timestamp)] = row
        return row

    def write_filtered(self, device_id: int, timestamp: datetime, lon: float, lat: float) -> LoggedPosition:
        """Sink entry point: attach filtered coordinates to an existing row."""
        key = (device_id, timestamp)
        with self._lock:
            row = self._rows.get(key)
            if row is None:
                raise KeyError(f"no position logged for device {device_id} at {timestamp}")
            row = replace(row, filtered_longitude=float(lon), filtered_latitude=float(lat))
            self._rows[key] = row
            return row

    def rows(
        self,
        device_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[LoggedPosition]:
        """Rows for one device, ascending by timestamp, bounds inclusive."""
        with self._lock:
            selected = [r for (dev, _), r in self._rows.items() if dev == device_id]
        if start is not None:
            selected = [r for r in selected if r.timestamp >= start]
        if end is not None:
            selected = [r for r in selected if r.timestamp <= end]
        selected.sort(key=lambda r: r.timestamp)
        return selected

    def positions(
        self,
        device_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Position]:
        return [r.to_position() for r in self.rows(device_id, start, end)]

    def trajectory(self, device_id: int, filtered: bool = True) -> np.ndarray:
        """
        Ordered line of (lon, lat) points, shape (N, 2).
        Filtered rows without filtered coordinates are skipped.
        """
        pts = []
        for r in self.rows(device_id):
            if filtered:
                if r.filtered_longitude is None or r.filtered_latitude is None:
                    continue
                pts.append((r.filtered_longitude, r.filtered_latitude))
            else:
                pts.append((r.longitude, r.latitude))
        return np.array(pts, dtype=float).reshape(-1, 2)

    def device_ids(self) -> List[int]:
        with self._lock:
            return sorted({dev for dev, _ in self._rows})

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
