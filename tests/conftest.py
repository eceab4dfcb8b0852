"""
Shared fixtures for cache tests.
"""
import time

import pytest

from flightcache.backing.memory import InMemoryBackingStore
from flightcache.cache.clock import ManualClock


def _wait_until(predicate, timeout: float = 5.0, interval: float = 0.005) -> bool:
    """Poll until predicate() is truthy or the timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


class FlakyBackingStore(InMemoryBackingStore):
    """In-memory store whose puts fail a configurable number of times per write."""

    def __init__(self, failures_per_write: int = 0, always_fail_values=()):
        super().__init__()
        self.failures_per_write = failures_per_write
        self.always_fail_values = set(always_fail_values)
        self.attempts = []
        self._failed = {}

    def put(self, key, value, version=None):
        self.attempts.append((key, value, version))
        if value in self.always_fail_values:
            raise IOError(f"backing store rejected {value!r}")
        seen = self._failed.get((key, version), 0)
        if seen < self.failures_per_write:
            self._failed[(key, version)] = seen + 1
            raise IOError(f"transient failure #{seen + 1} for {key!r}")
        super().put(key, value, version)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def clock():
    """Deterministic clock starting at t=0."""
    return ManualClock()


@pytest.fixture
def memory_store():
    return InMemoryBackingStore()


@pytest.fixture
def flaky_store_factory():
    return FlakyBackingStore


def no_sleep(seconds: float) -> None:
    pass


@pytest.fixture
def instant_sleep():
    """Sleep replacement so retry backoff doesn't slow tests down."""
    return no_sleep
