"""Tests for background maintenance and sweep()."""

import threading
import time

from memocache import CacheEngine
from memocache.maintenance import MaintenanceScheduler


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def square(x):
    return x * x


class TestMaintenanceScheduler:
    """Test the timer wrapper in isolation."""

    def test_runs_once_when_task_goes_idle(self):
        runs = []
        scheduler = MaintenanceScheduler(lambda: runs.append(1))
        assert scheduler.schedule(0.01) is True
        assert wait_for(lambda: runs == [1])
        assert wait_for(lambda: not scheduler.scheduled)

    def test_reschedules_while_task_asks(self):
        runs = []

        def task():
            runs.append(1)
            return 0.01 if len(runs) < 3 else None

        scheduler = MaintenanceScheduler(task)
        scheduler.schedule(0.01)
        assert wait_for(lambda: len(runs) == 3)
        time.sleep(0.05)
        assert len(runs) == 3

    def test_only_one_timer_armed(self):
        scheduler = MaintenanceScheduler(lambda: None)
        assert scheduler.schedule(10) is True
        assert scheduler.schedule(10) is False
        scheduler.close()

    def test_cancel_prevents_run(self):
        ran = threading.Event()
        scheduler = MaintenanceScheduler(ran.set)
        scheduler.schedule(0.05)
        scheduler.cancel()
        assert not ran.wait(0.15)
        assert scheduler.scheduled is False

    def test_closed_refuses_schedule(self):
        scheduler = MaintenanceScheduler(lambda: None)
        scheduler.close()
        assert scheduler.schedule(0.01) is False
        assert scheduler.closed is True


class TestEngineMaintenance:
    """Test the engine's self-rescheduling sweep."""

    def test_sweep_purges_expired_then_goes_idle(self, clock):
        engine = CacheEngine(clock=clock, maintenance_interval=0.02)
        try:
            engine.execute(square, (2,), ttl=1)
            assert engine.maintenance_scheduled

            clock.advance(5)
            assert wait_for(lambda: engine.stats().expirations == 1)
            assert wait_for(lambda: not engine.maintenance_scheduled)
            assert engine.stats().size == 0
        finally:
            engine.close()

    def test_not_scheduled_without_reason(self, clock):
        engine = CacheEngine(clock=clock, default_ttl=None, max_size=100, maintenance_interval=0.02)
        try:
            engine.execute(square, (2,))
            assert not engine.maintenance_scheduled
        finally:
            engine.close()

    def test_scheduled_near_capacity(self, clock):
        engine = CacheEngine(clock=clock, default_ttl=None, max_size=2, maintenance_interval=0.02)
        try:
            engine.execute(square, (1,))
            engine.execute(square, (2,))
            assert engine.maintenance_scheduled
        finally:
            engine.close()
        assert not engine.maintenance_scheduled

    def test_disabled_interval(self, clock):
        engine = CacheEngine(clock=clock, maintenance_interval=None)
        engine.execute(square, (2,), ttl=1)
        assert not engine.maintenance_scheduled

    def test_configure_disables_running_maintenance(self, clock):
        engine = CacheEngine(clock=clock, maintenance_interval=30)
        try:
            engine.execute(square, (2,))
            assert engine.maintenance_scheduled
            engine.configure(maintenance_interval=None)
            assert not engine.maintenance_scheduled
        finally:
            engine.close()

    def test_context_manager_closes(self, clock):
        with CacheEngine(clock=clock, maintenance_interval=30) as engine:
            engine.execute(square, (3,))
            assert engine.maintenance_scheduled
        assert not engine.maintenance_scheduled
        # still usable, just without background sweeps
        assert engine.execute(square, (3,)) == 9

    def test_clear_cancels_timer(self, clock):
        engine = CacheEngine(clock=clock, maintenance_interval=30)
        try:
            engine.execute(square, (3,))
            engine.clear()
            assert not engine.maintenance_scheduled
        finally:
            engine.close()


class TestSweep:
    """Test explicit sweep() passes."""

    def test_sweep_counts_expirations_not_evictions(self, engine, clock):
        engine.execute(square, (1,), ttl=1)
        engine.execute(square, (2,), ttl=100)
        clock.advance(10)

        assert engine.sweep() == 1
        stats = engine.stats()
        assert stats.expirations == 1
        assert stats.evictions == 0
        assert stats.size == 1

    def test_sweep_enforces_capacity(self, engine, clock):
        for i in range(4):
            engine.execute(square, (i,))
            clock.advance(1)
        engine.configure(max_size=2)

        assert engine.sweep() == 2
        assert engine.stats().size == 2
        assert engine.stats().evictions == 2

    def test_sweep_on_empty_store(self, engine):
        assert engine.sweep() == 0
