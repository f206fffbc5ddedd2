"""Reconciliation scheduler.

Every sweep fans out one worker thread per target that is not already
in flight. Sweeps never wait for their workers; overlap between sweeps
is resolved entirely by the InFlightGuard. Workers are only joined on
shutdown, via drain().
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Optional, Sequence

from .counters import UnsealCounters
from .engine import Outcome, UnsealEngine
from .errors import InvariantViolation
from .guard import InFlightGuard
from .keycache import KeyCache

logger = logging.getLogger("unsealer.scheduler")


class ReconciliationScheduler:
    """Fires sweeps over the target registry and tracks their workers.

    Args:
        targets: Fixed list of node base URLs.
        engine: Shared unseal engine.
        cache: Key cache read at the start of every run.
        guard: Per-target in-flight guard.
        counters: Counters for faults the engine never saw.
        poll_interval: Seconds between sweeps.
        stop_event: Process-wide stop/cancel signal.
    """

    def __init__(
        self,
        targets: Sequence[str],
        engine: UnsealEngine,
        cache: KeyCache,
        guard: InFlightGuard,
        counters: UnsealCounters,
        poll_interval: float = 60,
        stop_event: Optional[threading.Event] = None,
    ):
        self.targets = tuple(targets)
        self.engine = engine
        self.cache = cache
        self.guard = guard
        self.counters = counters
        self.poll_interval = poll_interval
        self.stop_event = stop_event or engine.cancel_event
        self._workers_lock = threading.Lock()
        self._workers: set[threading.Thread] = set()
        self.sweeps_started = 0
        self.last_sweep: Optional[datetime] = None
        self.last_outcomes: dict[str, str] = {}

    def sweep(self) -> list[threading.Thread]:
        """Start a run for every target that is not already in flight.

        Returns:
            list: Worker threads started by this sweep.
        """
        self.sweeps_started += 1
        self.last_sweep = datetime.now(timezone.utc)
        started = []
        for target in self.targets:
            if self.stop_event.is_set():
                break
            if not self.guard.try_acquire(target):
                logger.debug("Skipping %s, previous run still in flight", target)
                continue

            worker = threading.Thread(
                target=self._run_target,
                args=(target,),
                name=f"unseal-{target}",
                daemon=True,
            )
            try:
                worker.start()
            except RuntimeError:
                self.guard.release(target)
                raise
            # Tracked only once started; drain() prunes workers that finished first.
            with self._workers_lock:
                self._workers.add(worker)
            started.append(worker)
        return started

    def run(self) -> None:
        """Sweep now, then once per poll interval until stopped."""
        logger.info(
            "Reconciling %d target(s) every %.0fs", len(self.targets), self.poll_interval
        )
        next_tick = time.monotonic()
        while not self.stop_event.is_set():
            self.sweep()
            next_tick += self.poll_interval
            if self.stop_event.wait(timeout=max(0.0, next_tick - time.monotonic())):
                break
        logger.info("Scheduler stopped after %d sweep(s)", self.sweeps_started)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for every outstanding worker across all sweeps.

        Args:
            timeout: Overall upper bound in seconds, or None to wait forever.

        Returns:
            bool: True if every worker finished in time.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._workers_lock:
                self._workers = {w for w in self._workers if w.is_alive()}
                pending = list(self._workers)
            if not pending:
                return True
            for worker in pending:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    logger.warning("Drain timed out with %d worker(s) running", len(pending))
                    return False
                worker.join(timeout=remaining)

    def in_flight(self) -> list[str]:
        return self.guard.active()

    def _run_target(self, target: str) -> None:
        outcome = Outcome.FAILED
        try:
            keys = self.cache.snapshot()
            if not keys:
                raise InvariantViolation("key cache is empty")
            outcome = self.engine.unseal(target, keys)
        except Exception:
            logger.exception("Unseal task for %s crashed", target)
            self.counters.record_failure()
        finally:
            self.last_outcomes[target] = outcome.value
            self.guard.release(target)
            with self._workers_lock:
                self._workers.discard(threading.current_thread())
