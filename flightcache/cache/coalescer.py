"""
Request coalescing (single-flight) for cache loads.

When multiple concurrent callers ask for the same missing key, only one
loader call is made and all callers share its result or its failure.
"""
import threading
import time
import logging
from typing import Dict, Optional, Callable, Any, Hashable, Tuple
from dataclasses import dataclass, field

from .core import CacheSource
from ..errors import LoadFailedError, LoadTimeoutError

logger = logging.getLogger("flightcache.coalescer")

# Returned by a probe when the store has no live value
MISSING = object()


@dataclass
class InFlightLoad:
    """Tracks an in-progress loader call."""
    key: Hashable
    event: threading.Event = field(default_factory=threading.Event)
    result: Optional[Any] = None
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.monotonic)
    waiter_count: int = 0
    superseded: bool = False  # A put landed while loading; don't store


class RequestCoalescer:
    """
    Ensures concurrent loads of the same key share one loader call.

    Pattern:
    - First caller for a key registers an InFlightLoad and runs the loader
    - Later callers for the same key wait on its Event
    - The result is committed (stored) and unregistered atomically, then
      waiters are released with the same result or failure
    - A waiter that times out leaves the load running for everyone else

    Usage:
        coalescer = RequestCoalescer()
        value, source = coalescer.run(
            key="user:42",
            load_fn=lambda: db.fetch_user(42),
        )
    """

    def __init__(self, timeout: Optional[float] = 30.0):
        """
        Initialize the coalescer.

        Args:
            timeout: Max seconds a waiter blocks on an in-flight load
                     (None waits for as long as the load takes)
        """
        self._in_flight: Dict[Hashable, InFlightLoad] = {}
        self._lock = threading.Lock()
        self._timeout = timeout

    def run(
        self,
        key: Hashable,
        load_fn: Callable[[], Any],
        probe: Optional[Callable[[], Any]] = None,
        commit: Optional[Callable[[InFlightLoad, Any], None]] = None,
    ) -> Tuple[Any, CacheSource]:
        """
        Either join an existing in-flight load or start a new one.

        Args:
            key: Cache key being loaded
            load_fn: Function to call if we need to load
            probe: Called under the coalescer lock before registering;
                   returns a live cached value or MISSING
            commit: Called under the coalescer lock with the result of a
                    successful load, before waiters are released

        Returns:
            (value, source) where source tells whether this caller found a
            live value, ran the loader, or waited on another caller

        Raises:
            LoadFailedError: The loader raised (shared by all callers)
            LoadTimeoutError: Waiting for an in-flight load timed out
        """
        with self._lock:
            in_flight = self._in_flight.get(key)
            if in_flight is not None:
                in_flight.waiter_count += 1
                logger.debug(
                    f"Coalescing load for {key!r} "
                    f"(waiters: {in_flight.waiter_count})"
                )
                is_initiator = False
            else:
                if probe is not None:
                    value = probe()
                    if value is not MISSING:
                        return value, CacheSource.HIT
                in_flight = InFlightLoad(key=key)
                self._in_flight[key] = in_flight
                is_initiator = True
                logger.debug(f"Initiating load for {key!r}")

        if is_initiator:
            return self._load(in_flight, load_fn, commit), CacheSource.LOADED

        completed = in_flight.event.wait(timeout=self._timeout)
        if not completed:
            logger.error(f"Timeout waiting for coalesced load: {key!r}")
            raise LoadTimeoutError(key, self._timeout)

        if in_flight.error is not None:
            raise LoadFailedError(key, in_flight.error) from in_flight.error
        return in_flight.result, CacheSource.COALESCED

    def _load(
        self,
        in_flight: InFlightLoad,
        load_fn: Callable[[], Any],
        commit: Optional[Callable[[InFlightLoad, Any], None]],
    ) -> Any:
        key = in_flight.key
        succeeded = False
        try:
            result = load_fn()
            succeeded = True
        except Exception as e:
            in_flight.error = e
            logger.warning(f"Load failed for {key!r}: {e}")
        finally:
            try:
                with self._lock:
                    try:
                        if succeeded:
                            in_flight.result = result
                            if commit is not None:
                                commit(in_flight, result)
                        elif in_flight.error is None:
                            # Interrupted by a BaseException; release waiters anyway
                            in_flight.error = RuntimeError(f"Load for {key!r} was interrupted")
                    except Exception as e:
                        # Loaded but not stored: every caller sees the commit failure
                        in_flight.error = e
                        logger.error(f"Storing load result for {key!r} failed: {e}")
                    finally:
                        self._in_flight.pop(key, None)
            finally:
                in_flight.event.set()

        if in_flight.error is not None:
            raise LoadFailedError(key, in_flight.error) from in_flight.error
        return in_flight.result

    def publish(self, key: Hashable, write_fn: Callable[[], Any]) -> Any:
        """
        Run a direct write for key under the coalescer lock.

        Any load in flight for key is marked superseded first: its callers
        still receive the loaded value, but it is not stored. A load that
        registers after this call finds the written value via its probe.

        Returns:
            Whatever write_fn returns
        """
        with self._lock:
            in_flight = self._in_flight.get(key)
            if in_flight is not None:
                in_flight.superseded = True
                logger.debug(f"Superseded in-flight load for {key!r}")
            return write_fn()

    def is_loading(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._in_flight

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight loads."""
        with self._lock:
            return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        with self._lock:
            return {
                "active_requests": len(self._in_flight),
                "active_keys": list(self._in_flight.keys()),
                "waiters": sum(f.waiter_count for f in self._in_flight.values()),
            }
