"""
Injectable time sources.

Cache logic never reads the system clock directly so tests can drive
expiry deterministically with ManualClock.
"""
import threading
import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """Source of the current time in seconds."""

    @abstractmethod
    def now(self) -> float:
        pass

    def __call__(self) -> float:
        return self.now()


class SystemClock(Clock):
    """Monotonic process clock."""

    def now(self) -> float:
        return time.monotonic()


class ManualClock(Clock):
    """
    Clock that only moves when told to.

    Usage:
        clock = ManualClock()
        cache = CacheManager(ttl_seconds=0.1, clock=clock)
        clock.advance(0.15)
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        """Move time forward and return the new timestamp."""
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        with self._lock:
            self._now += seconds
            return self._now

    def set(self, timestamp: float) -> None:
        with self._lock:
            if timestamp < self._now:
                raise ValueError("ManualClock cannot move backwards")
            self._now = timestamp
