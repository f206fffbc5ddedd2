"""In-memory cache of quorum unseal keys.

Keys live only in process memory. Snapshots are immutable tuples, so a
reader always works with the complete set it captured even if the
cache is replaced while an unseal run is in progress.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Optional, Sequence


class KeyCache:
    """Thread-safe holder of the current key snapshot.

    The lock guards only the reference swap and read. Fetching new keys
    happens outside of it, in SecretsFetcher.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._keys: tuple[str, ...] = ()
        self._updated_at: Optional[datetime] = None

    def snapshot(self) -> tuple[str, ...]:
        """Return the current keys as an immutable tuple."""
        with self._lock:
            return self._keys

    def replace(self, keys: Sequence[str]) -> None:
        """Atomically replace the whole key set.

        Args:
            keys: The complete new key set.

        Raises:
            ValueError: If keys is empty or contains an empty value.
        """
        new_keys = tuple(keys)
        if not new_keys or any(not k for k in new_keys):
            raise ValueError("refusing to cache an empty or partial key set")
        with self._lock:
            self._keys = new_keys
            self._updated_at = datetime.now(timezone.utc)

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    @property
    def is_ready(self) -> bool:
        """True once at least one key is cached."""
        return len(self) > 0

    @property
    def updated_at(self) -> Optional[datetime]:
        with self._lock:
            return self._updated_at

    def __repr__(self) -> str:
        # Never render key material.
        return f"KeyCache(keys={len(self)})"
