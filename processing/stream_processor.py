# processing/stream_processor.py
"""
Off-line filtering of a finished track.

The whole track is one left fold of `advance` over the fixes in time
order. `FilteredTrack` exposes that fold lazily: iterating yields one
StepResult per fix (each computed by exactly one filter step), and
iterating again simply replays the fold from the start. The final
estimate is the last element of the same fold.
"""
from __future__ import annotations

from collections import deque, defaultdict
from concurrent.futures import ThreadPoolExecutor
from operator import attrgetter
from typing import Any, Dict, Iterable, Iterator, List, Optional

from tracking.kalman_filter import FilterConfig, StepResult, advance, as_config
from tracking.state import FilterState, Position


def order_track(positions: Iterable[Position]) -> List[Position]:
    """Ascending by timestamp; ties keep their arrival order (stable sort)."""
    return sorted(positions, key=attrgetter("timestamp"))


def fold_results(
    positions: Iterable[Position],
    config: FilterConfig | Dict[str, Any] | None = None,
    initial: Optional[FilterState] = None,
) -> Iterator[StepResult]:
    cfg = as_config(config)
    state = initial
    for m in positions:
        result = advance(state, m, cfg)
        # rejected fixes carry the prior forward unchanged
        state = result.state
        yield result


class FilteredTrack:
    """
    Lazy, finite, restartable sequence of per-fix filter results for one
    track.
    """

    def __init__(
        self,
        positions: Iterable[Position],
        config: FilterConfig | Dict[str, Any] | None = None,
        initial: Optional[FilterState] = None,
        presorted: bool = False,
    ):
        positions = list(positions)
        self.positions = tuple(positions if presorted else order_track(positions))
        self.config = as_config(config)
        self.initial = initial

    def __iter__(self) -> Iterator[StepResult]:
        return fold_results(self.positions, self.config, self.initial)

    def __len__(self) -> int:
        return len(self.positions)

    def states(self) -> Iterator[FilterState]:
        """Estimate after each accepted fix."""
        for r in self:
            if r.accepted:
                yield r.state

    def final(self) -> Optional[FilterState]:
        """State after the last fix, or `initial` for an empty track."""
        last = deque(self, maxlen=1)
        return last[0].state if last else self.initial

    def rejected(self) -> List[StepResult]:
        return [r for r in self if not r.accepted]


def filter_track(
    positions: Iterable[Position],
    config: FilterConfig | Dict[str, Any] | None = None,
    initial: Optional[FilterState] = None,
) -> FilteredTrack:
    return FilteredTrack(positions, config=config, initial=initial)


def final_state(
    positions: Iterable[Position],
    config: FilterConfig | Dict[str, Any] | None = None,
    initial: Optional[FilterState] = None,
) -> Optional[FilterState]:
    return FilteredTrack(positions, config=config, initial=initial).final()


def group_by_device(positions: Iterable[Position]) -> Dict[int, List[Position]]:
    tracks: Dict[int, List[Position]] = defaultdict(list)
    for m in positions:
        tracks[m.device_id].append(m)
    return dict(tracks)


def filter_devices(
    positions: Iterable[Position],
    config: FilterConfig | Dict[str, Any] | None = None,
    max_workers: Optional[int] = None,
) -> Dict[int, List[StepResult]]:
    """
    Split a mixed batch by device and fold each device's track
    independently in a thread pool. One device is always folded
    sequentially.
    """
    cfg = as_config(config)
    tracks = group_by_device(positions)

    def _run(track: List[Position]) -> List[StepResult]:
        return list(FilteredTrack(track, config=cfg))

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {dev: pool.submit(_run, track) for dev, track in tracks.items()}
        return {dev: fut.result() for dev, fut in futures.items()}
