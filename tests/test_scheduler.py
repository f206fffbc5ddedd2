"""Tests for the reconciliation scheduler."""

from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock

import pytest

from conftest import FakeNode

from unsealer.counters import UnsealCounters
from unsealer.engine import Outcome, UnsealEngine
from unsealer.guard import InFlightGuard
from unsealer.keycache import KeyCache
from unsealer.scheduler import ReconciliationScheduler

TARGETS = ("http://a:8200", "http://b:8200", "http://c:8200")


@pytest.fixture
def cache() -> KeyCache:
    c = KeyCache()
    c.replace(["k1", "k2", "k3", "k4"])
    return c


def _scheduler(node, cache, targets=TARGETS, poll_interval=60.0, backoff_base=0.0):
    counters = UnsealCounters()
    engine = UnsealEngine(node, counters, max_attempts=3, backoff_base=backoff_base)
    return ReconciliationScheduler(
        targets,
        engine,
        cache,
        InFlightGuard(),
        counters,
        poll_interval=poll_interval,
    )


class TestSweep:
    """Tests for a single sweep."""

    def test_fans_out_one_worker_per_target(self, cache):
        node = FakeNode(health=[503], submits=[False])
        sched = _scheduler(node, cache)
        workers = sched.sweep()
        assert len(workers) == 3
        assert sched.drain(timeout=5) is True

        assert sorted(t for t, _ in node.submitted) == sorted(TARGETS)
        assert sched.last_outcomes == {t: "unsealed" for t in TARGETS}
        assert sched.counters.successes == 3
        assert sched.in_flight() == []
        assert sched.sweeps_started == 1

    def test_skips_target_already_in_flight(self, cache):
        node = FakeNode(health=[200])
        sched = _scheduler(node, cache)
        sched.guard.try_acquire("http://b:8200")

        workers = sched.sweep()
        sched.drain(timeout=5)

        assert len(workers) == 2
        assert "http://b:8200" not in node.health_calls
        assert sched.in_flight() == ["http://b:8200"]

    def test_overlapping_sweeps_never_duplicate_a_target(self, cache):
        node = FakeNode(health=[503], submits=[False], delay=0.3)
        sched = _scheduler(node, cache)

        first = sched.sweep()
        second = sched.sweep()
        assert len(first) == 3
        assert second == []

        sched.drain(timeout=5)
        assert len(node.submitted) == 3
        assert sched.counters.attempts == 3

    def test_sweep_does_not_wait_for_workers(self, cache):
        node = FakeNode(health=[503], submits=[False], delay=0.5)
        sched = _scheduler(node, cache)
        start = time.monotonic()
        sched.sweep()
        assert time.monotonic() - start < 0.4
        sched.drain(timeout=5)

    def test_crashing_run_is_contained(self, cache):
        sched = _scheduler(FakeNode(), cache)
        sched.engine = MagicMock()
        sched.engine.unseal.side_effect = RuntimeError("bug")

        sched.sweep()
        assert sched.drain(timeout=5)

        assert sched.counters.failures == 3
        assert sched.in_flight() == []
        assert set(sched.last_outcomes.values()) == {Outcome.FAILED.value}

        # targets are retried on the next sweep
        sched.engine.unseal.side_effect = None
        sched.engine.unseal.return_value = Outcome.UNSEALED
        assert len(sched.sweep()) == 3
        sched.drain(timeout=5)

    def test_empty_cache_counts_failure(self):
        node = FakeNode()
        sched = _scheduler(node, KeyCache(), targets=("http://a:8200",))
        sched.sweep()
        sched.drain(timeout=5)
        assert sched.counters.failures == 1
        assert node.health_calls == []
        assert sched.in_flight() == []

    def test_run_uses_snapshot_captured_at_start(self, cache):
        node = FakeNode(health=[503], submits=[True, False], delay=0.2)
        sched = _scheduler(node, cache, targets=("http://a:8200",))
        sched.sweep()
        time.sleep(0.05)
        cache.replace(["n1", "n2", "n3", "n4"])
        sched.drain(timeout=5)
        assert [k for _, k in node.submitted] == ["k1", "k2"]


class TestLifecycle:
    """Tests for periodic sweeps, cancellation and drain."""

    def test_run_sweeps_immediately_and_periodically(self, cache):
        node = FakeNode(health=[200])
        sched = _scheduler(node, cache, poll_interval=0.1)
        t = threading.Thread(target=sched.run, daemon=True)
        t.start()

        time.sleep(0.35)
        sched.stop_event.set()
        t.join(timeout=2)

        assert not t.is_alive()
        assert sched.sweeps_started >= 3
        assert sched.drain(timeout=5)

    def test_run_returns_immediately_when_stopped(self, cache):
        sched = _scheduler(FakeNode(health=[200]), cache)
        sched.stop_event.set()
        sched.run()
        assert sched.sweeps_started == 0

    def test_shutdown_drains_all_in_flight_runs(self, cache):
        node = FakeNode(health=[503], submits=[True], delay=0.05)
        sched = _scheduler(node, cache, backoff_base=30.0)
        sched.sweep()
        time.sleep(0.1)
        assert len(sched.in_flight()) == 3

        sched.stop_event.set()
        assert sched.drain(timeout=5) is True
        assert sched.in_flight() == []
        assert sched.counters.failures == 0
        assert set(sched.last_outcomes.values()) == {Outcome.CANCELLED.value}

    def test_drain_timeout(self, cache):
        node = FakeNode(health=[503], submits=[False], delay=0.5)
        sched = _scheduler(node, cache, targets=("http://a:8200",))
        sched.sweep()
        assert sched.drain(timeout=0.05) is False
        assert sched.drain(timeout=5) is True

    def test_no_sweep_after_stop(self, cache):
        node = FakeNode(health=[200])
        sched = _scheduler(node, cache)
        sched.stop_event.set()
        assert sched.sweep() == []
        assert node.health_calls == []

    def test_drain_prunes_workers_that_finished_before_tracking(self, cache):
        sched = _scheduler(FakeNode(health=[200]), cache)
        finished = threading.Thread(target=lambda: None)
        finished.start()
        finished.join()
        sched._workers.add(finished)

        assert sched.drain(timeout=0) is True
        assert sched._workers == set()

    def test_drain_right_after_sweep(self, cache):
        sched = _scheduler(FakeNode(health=[200]), cache)
        for _ in range(20):
            sched.sweep()
            assert sched.drain(timeout=5) is True
        assert sched.in_flight() == []
