"""Per-target in-flight guard.

Prevents two unseal runs against the same node from overlapping while
letting different nodes proceed concurrently.
"""

from __future__ import annotations

import threading


class InFlightGuard:
    """Concurrent set of targets with an active unseal run."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active: set[str] = set()

    def try_acquire(self, target: str) -> bool:
        """Mark a target in flight.

        Returns:
            bool: False if the target is already in flight. Never blocks
            on another run.
        """
        with self._lock:
            if target in self._active:
                return False
            self._active.add(target)
            return True

    def release(self, target: str) -> None:
        """Clear a target's in-flight marker. Safe to call twice."""
        with self._lock:
            self._active.discard(target)

    def active(self) -> list[str]:
        """Targets currently in flight, sorted."""
        with self._lock:
            return sorted(self._active)

    def __contains__(self, target: str) -> bool:
        with self._lock:
            return target in self._active

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)
