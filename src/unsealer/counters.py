"""Operational counters for unseal activity."""

from __future__ import annotations

import threading

from pydantic import BaseModel


class CountersSnapshot(BaseModel):
    """Point-in-time counter values, shaped for the /metrics endpoint."""

    unseal_attempts: int = 0
    unseal_successes: int = 0
    unseal_failures: int = 0


class UnsealCounters:
    """Monotonic attempt/success/failure counters.

    Each increment holds the lock for a single integer add, so readers
    never wait on network activity.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._attempts = 0
        self._successes = 0
        self._failures = 0

    def record_attempt(self) -> None:
        with self._lock:
            self._attempts += 1

    def record_success(self) -> None:
        with self._lock:
            self._successes += 1

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1

    @property
    def attempts(self) -> int:
        return self.snapshot().unseal_attempts

    @property
    def successes(self) -> int:
        return self.snapshot().unseal_successes

    @property
    def failures(self) -> int:
        return self.snapshot().unseal_failures

    def snapshot(self) -> CountersSnapshot:
        """Return all three counters read together."""
        with self._lock:
            return CountersSnapshot(
                unseal_attempts=self._attempts,
                unseal_successes=self._successes,
                unseal_failures=self._failures,
            )
