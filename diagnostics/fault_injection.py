# diagnostics/fault_injection.py
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import timedelta
import math
from typing import Dict, Any, List, Optional, Tuple
import numpy as np

from tracking.noise_model import METERS_PER_DEGREE
from tracking.state import Position


@dataclass
class FaultConfig:
    enabled: bool = False

    drop_fixes: float = 0.0

    # HDOP spike: receiver reports poor geometry
    hdop_spike_prob: float = 0.0
    hdop_spike_value: float = 8.0

    # Outlier: position jumps by `outlier_m` meters in a random direction
    outlier_prob: float = 0.0
    outlier_m: float = 50.0

    # Duplicate: same fix re-sent `duplicate_delay_s` later (sub-second by default)
    duplicate_prob: float = 0.0
    duplicate_delay_s: float = 0.5

    # Corrupt: coordinates become NaN (rejected by the filter)
    corrupt_prob: float = 0.0

    # Swap: adjacent fixes arrive out of order
    swap_prob: float = 0.0

    rng_seed: Optional[int] = None


class FaultInjector:
    def __init__(self, config: FaultConfig | Dict[str, Any] | None = None):
        if config is None:
            config = FaultConfig()
        if isinstance(config, dict):
            config = FaultConfig(**config)
        self.cfg: FaultConfig = config
        self.rng = np.random.default_rng(self.cfg.rng_seed)

    def _p(self, prob: float) -> bool:
        if not self.cfg.enabled:
            return False
        return self.rng.random() < float(prob)

    def maybe_drop(self, fix: Position) -> Optional[Position]:
        if self._p(self.cfg.drop_fixes):
            return None
        return fix

    def maybe_hdop_spike(self, fix: Position) -> tuple[Position, bool]:
        if self._p(self.cfg.hdop_spike_prob):
            return replace(fix, hdop=float(self.cfg.hdop_spike_value)), True
        return fix, False

    def maybe_outlier(self, fix: Position) -> tuple[Position, bool]:
        """
        Returns (fix_out, injected).
        """
        if not self._p(self.cfg.outlier_prob):
            return fix, False

        heading = float(self.rng.random() * 2.0 * np.pi)
        dy = self.cfg.outlier_m * math.cos(heading)
        dx = self.cfg.outlier_m * math.sin(heading)
        lat_cos = max(math.cos(math.radians(fix.latitude)), 1e-6)

        out = replace(
            fix,
            latitude=fix.latitude + dy / METERS_PER_DEGREE,
            longitude=fix.longitude + dx / (METERS_PER_DEGREE * lat_cos),
        )
        return out, True

    def maybe_corrupt(self, fix: Position) -> tuple[Position, bool]:
        if self._p(self.cfg.corrupt_prob):
            return replace(fix, latitude=float("nan"), longitude=float("nan")), True
        return fix, False

    def maybe_duplicate(self, fix: Position) -> Optional[Position]:
        if self._p(self.cfg.duplicate_prob):
            return replace(fix, timestamp=fix.timestamp + timedelta(seconds=self.cfg.duplicate_delay_s))
        return None

    def maybe_swap(self, fixes: List[Position]) -> tuple[List[Position], int]:
        """Swap adjacent pairs in arrival order. Timestamps are untouched."""
        out = list(fixes)
        swapped = 0
        i = 0
        while i < len(out) - 1:
            if self._p(self.cfg.swap_prob):
                out[i], out[i + 1] = out[i + 1], out[i]
                swapped += 1
                i += 2
            else:
                i += 1
        return out, swapped

    def apply(self, fixes: List[Position]) -> Tuple[List[Position], int]:
        """
        Run every fault over a track in arrival order.
        Returns (fixes_out, faults_injected).
        """
        if not self.cfg.enabled:
            return list(fixes), 0

        out: List[Position] = []
        injected = 0
        for fix in fixes:
            kept = self.maybe_drop(fix)
            if kept is None:
                injected += 1
                continue

            kept, hit = self.maybe_hdop_spike(kept)
            injected += int(hit)
            kept, hit = self.maybe_outlier(kept)
            injected += int(hit)
            kept, hit = self.maybe_corrupt(kept)
            injected += int(hit)
            out.append(kept)

            dup = self.maybe_duplicate(kept)
            if dup is not None:
                out.append(dup)
                injected += 1

        out, swapped = self.maybe_swap(out)
        return out, injected + swapped
