"""Shared fixtures."""

import pytest

from memocache import CacheEngine


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(clock):
    # no background timer: tests drive sweeps explicitly
    eng = CacheEngine(clock=clock, maintenance_interval=None)
    yield eng
    eng.close()
