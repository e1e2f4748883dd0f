# storage/device_store.py
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import threading
from typing import Dict, Iterator, Optional, Any

from tracking.state import FilterState


class StaleStateError(RuntimeError):
    """compare_and_set() lost against a concurrent writer."""


@dataclass
class _Entry:
    state: FilterState
    version: int


class InMemoryDeviceStore:
    """
    Keyed store holding the latest FilterState per device.

    Read-modify-write cycles for one device are serialized either with
    `locked(device_id)` or with versioned `compare_and_set`. Different
    devices never share a lock.

    States are kept as plain dicts (FilterState.to_dict) so that what comes
    back out is exactly what a document store would return.
    """

    def __init__(self):
        self._docs: Dict[int, Dict[str, Any]] = {}
        self._versions: Dict[int, int] = {}
        self._locks: Dict[int, threading.Lock] = {}
        self._registry_lock = threading.Lock()  # protects the three dicts

    def _lock_for(self, device_id: int) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(device_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[device_id] = lock
            return lock

    @contextmanager
    def locked(self, device_id: int) -> Iterator["InMemoryDeviceStore"]:
        """Exclusive section for one device. Not re-entrant."""
        lock = self._lock_for(device_id)
        with lock:
            yield self

    def get(self, device_id: int) -> Optional[FilterState]:
        entry = self.get_versioned(device_id)
        return None if entry is None else entry.state

    def get_versioned(self, device_id: int) -> Optional[_Entry]:
        with self._registry_lock:
            doc = self._docs.get(device_id)
            if doc is None:
                return None
            return _Entry(FilterState.from_dict(doc), self._versions[device_id])

    def set(self, device_id: int, state: FilterState) -> int:
        with self._registry_lock:
            self._docs[device_id] = state.to_dict()
            version = self._versions.get(device_id, 0) + 1
            self._versions[device_id] = version
            return version

    def compare_and_set(self, device_id: int, expected_version: int, state: FilterState) -> int:
        """
        Write `state` only if the stored version is still `expected_version`
        (0 meaning "no state yet"). Returns the new version.
        """
        with self._registry_lock:
            current = self._versions.get(device_id, 0)
            if current != expected_version:
                raise StaleStateError(
                    f"device {device_id}: expected version {expected_version}, found {current}"
                )
            self._docs[device_id] = state.to_dict()
            self._versions[device_id] = current + 1
            return current + 1

    def version(self, device_id: int) -> int:
        with self._registry_lock:
            return self._versions.get(device_id, 0)

    def device_ids(self) -> list[int]:
        with self._registry_lock:
            return sorted(self._docs)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._docs)

    def __contains__(self, device_id: int) -> bool:
        with self._registry_lock:
            return device_id in self._docs
