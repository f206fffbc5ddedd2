"""
Unseal protocol engine.

One attempt walks a single node through:

    CheckHealth --acceptable--> done (no counters touched)
         |
       sealed
         v
    Unseal: submit keys in order, re-probing health before every key
            after the first, until the node reports unsealed or the
            keys run out.

``unseal()`` wraps attempts in the bounded retry loop with exponential
backoff and owns the success/failure counters.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Optional, Sequence

from .counters import UnsealCounters
from .errors import ProtocolError, TransportError
from .node import ACCEPTABLE_STATUSES, SEALED_STATUS, VaultNodeClient

logger = logging.getLogger("unsealer.engine")


class Outcome(str, Enum):
    """Result of an attempt or a full run."""

    ALREADY_UNSEALED = "already_unsealed"
    UNSEALED = "unsealed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def ok(self) -> bool:
        return self in (Outcome.ALREADY_UNSEALED, Outcome.UNSEALED)


class UnsealEngine:
    """Drives the unseal protocol for one target at a time.

    An engine holds no per-target state and is shared by all tasks.

    Args:
        node: Wire client for vault nodes.
        counters: Shared operational counters.
        cancel_event: Process-wide cancellation signal.
        max_attempts: Outer attempts per run.
        backoff_base: Delay before the second attempt, doubled after each failure.
    """

    def __init__(
        self,
        node: VaultNodeClient,
        counters: UnsealCounters,
        cancel_event: Optional[threading.Event] = None,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
    ):
        self.node = node
        self.counters = counters
        self.cancel_event = cancel_event or threading.Event()
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def unseal(self, target: str, keys: Sequence[str]) -> Outcome:
        """Run the full retry loop against one target.

        Args:
            target: Node base URL.
            keys: Key snapshot captured by the caller; used unchanged for
                every attempt of this run.

        Returns:
            Outcome: UNSEALED or ALREADY_UNSEALED on success, FAILED once
            every attempt is exhausted, CANCELLED if shutdown interrupted
            the run.
        """
        keys = tuple(keys)
        for attempt in range(1, self.max_attempts + 1):
            if self.cancelled:
                logger.info("Run for %s cancelled before attempt %d", target, attempt)
                return Outcome.CANCELLED

            outcome = self.attempt(target, keys)
            if outcome is Outcome.UNSEALED:
                self.counters.record_success()
                return outcome
            if outcome is not Outcome.FAILED:
                return outcome

            if attempt < self.max_attempts:
                delay = self.backoff_base * (2 ** (attempt - 1))
                logger.warning(
                    "Unseal attempt %d/%d for %s failed, retrying in %.1fs",
                    attempt, self.max_attempts, target, delay,
                )
                if self._backoff(delay):
                    logger.info("Run for %s cancelled during backoff", target)
                    return Outcome.CANCELLED

        self.counters.record_failure()
        logger.error("Failed to unseal %s after %d attempts", target, self.max_attempts)
        return Outcome.FAILED

    def attempt(self, target: str, keys: Sequence[str]) -> Outcome:
        """One CheckHealth -> Unseal pass. Never raises for node errors."""
        try:
            status = self.node.health(target)
        except TransportError as exc:
            logger.error("Health check failed for %s: %s", target, exc)
            return Outcome.FAILED

        if status in ACCEPTABLE_STATUSES:
            logger.debug("Node %s healthy (status %d), nothing to do", target, status)
            return Outcome.ALREADY_UNSEALED
        if status != SEALED_STATUS:
            logger.error("Node %s returned unexpected health status %d", target, status)
            return Outcome.FAILED

        logger.info("Node %s is sealed, submitting %d keys", target, len(keys))
        self.counters.record_attempt()
        return self._submit_keys(target, keys)

    def _submit_keys(self, target: str, keys: Sequence[str]) -> Outcome:
        for index, key in enumerate(keys):
            if self.cancelled:
                logger.info("Run for %s cancelled after %d key(s)", target, index)
                return Outcome.CANCELLED

            if index > 0 and self._quorum_reached(target):
                logger.info("Node %s unsealed by another actor after %d key(s)", target, index)
                return Outcome.UNSEALED

            try:
                sealed = self.node.submit_key(target, key)
            except (TransportError, ProtocolError) as exc:
                logger.warning("Key %d had no effect on %s: %s", index + 1, target, exc)
                continue

            if not sealed:
                logger.info("Node %s unsealed successfully with key %d", target, index + 1)
                return Outcome.UNSEALED

        logger.error("Node %s still sealed after all %d keys", target, len(keys))
        return Outcome.FAILED

    def _quorum_reached(self, target: str) -> bool:
        try:
            return self.node.health(target) in ACCEPTABLE_STATUSES
        except TransportError as exc:
            logger.warning("Health re-check of %s failed, continuing: %s", target, exc)
            return False

    def _backoff(self, delay: float) -> bool:
        """Sleep for delay seconds; True if cancelled meanwhile."""
        return self.cancel_event.wait(timeout=delay)
