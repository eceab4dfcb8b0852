"""
Tests for single-flight request coalescing.
"""
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from flightcache.cache.coalescer import MISSING, RequestCoalescer
from flightcache.cache.core import CacheSource
from flightcache.errors import LoadFailedError, LoadTimeoutError


class BlockingLoader:
    """Loader that blocks until released and counts its calls."""

    def __init__(self, result="value", error=None):
        self.result = result
        self.error = error
        self.release = threading.Event()
        self.started = threading.Event()
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
        self.started.set()
        self.release.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.result


def _waiters(coalescer):
    return coalescer.get_stats()["waiters"]


class TestRequestCoalescer:
    """Tests for RequestCoalescer."""

    def test_single_caller_loads(self):
        """Test a lone caller runs the loader."""
        coalescer = RequestCoalescer()
        value, source = coalescer.run("k", lambda: 42)
        assert value == 42
        assert source is CacheSource.LOADED
        assert coalescer.active_requests == 0

    def test_concurrent_callers_share_one_load(self, wait_until):
        """Test N concurrent callers trigger exactly one loader call."""
        coalescer = RequestCoalescer()
        loader = BlockingLoader(result={"id": 1})
        n = 8

        with ThreadPoolExecutor(max_workers=n) as pool:
            futures = [pool.submit(coalescer.run, "k", loader) for _ in range(n)]
            assert wait_until(lambda: _waiters(coalescer) == n - 1)
            loader.release.set()
            results = [f.result(timeout=5) for f in futures]

        assert loader.calls == 1
        values = [value for value, _ in results]
        assert all(v is values[0] for v in values)
        sources = [source for _, source in results]
        assert sources.count(CacheSource.LOADED) == 1
        assert sources.count(CacheSource.COALESCED) == n - 1

    def test_failure_shared_by_all_waiters(self, wait_until):
        """Test every caller sees the same underlying exception."""
        coalescer = RequestCoalescer()
        boom = IOError("disk on fire")
        loader = BlockingLoader(error=boom)

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [pool.submit(coalescer.run, "y", loader) for _ in range(2)]
            assert wait_until(lambda: _waiters(coalescer) == 1)
            loader.release.set()
            errors = []
            for f in futures:
                with pytest.raises(LoadFailedError) as excinfo:
                    f.result(timeout=5)
                errors.append(excinfo.value)

        assert loader.calls == 1
        assert all(e.cause is boom for e in errors)
        assert all(e.__cause__ is boom for e in errors)
        assert coalescer.active_requests == 0

    def test_failure_does_not_poison_next_attempt(self):
        """Test a new load can run after a failed one."""
        coalescer = RequestCoalescer()

        def failing():
            raise ValueError("nope")

        with pytest.raises(LoadFailedError):
            coalescer.run("k", failing)

        value, source = coalescer.run("k", lambda: "ok")
        assert value == "ok"
        assert source is CacheSource.LOADED

    def test_probe_hit_skips_load(self):
        """Test a live value found by the probe is returned without loading."""
        coalescer = RequestCoalescer()
        calls = []

        value, source = coalescer.run("k", lambda: calls.append(1), probe=lambda: "cached")

        assert value == "cached"
        assert source is CacheSource.HIT
        assert calls == []

    def test_probe_miss_loads(self):
        """Test MISSING from the probe falls through to a load."""
        coalescer = RequestCoalescer()
        value, source = coalescer.run("k", lambda: "fresh", probe=lambda: MISSING)
        assert (value, source) == ("fresh", CacheSource.LOADED)

    def test_commit_runs_before_waiters_released(self, wait_until):
        """Test commit happens before any caller returns."""
        coalescer = RequestCoalescer()
        loader = BlockingLoader(result="v")
        committed = []

        def commit(flight, result):
            committed.append(result)

        with ThreadPoolExecutor(max_workers=2) as pool:
            first = pool.submit(coalescer.run, "k", loader, None, commit)
            assert loader.started.wait(timeout=5)
            second = pool.submit(coalescer.run, "k", loader)
            assert wait_until(lambda: _waiters(coalescer) == 1)
            loader.release.set()
            second.result(timeout=5)
            assert committed == ["v"]
            first.result(timeout=5)

    def test_publish_supersedes_in_flight_load(self):
        """Test publish flags the current load and returns the write's result."""
        coalescer = RequestCoalescer()
        loader = BlockingLoader()
        flags = []

        with ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(
                coalescer.run, "k", loader, None, lambda flight, _: flags.append(flight.superseded)
            )
            assert loader.started.wait(timeout=5)
            assert coalescer.is_loading("k")
            assert coalescer.publish("k", lambda: "written") == "written"
            loader.release.set()
            future.result(timeout=5)

        assert flags == [True]

    def test_publish_without_load_just_writes(self):
        """Test publish runs the write when nothing is loading."""
        coalescer = RequestCoalescer()
        writes = []
        coalescer.publish("k", lambda: writes.append("k"))
        assert writes == ["k"]
        assert coalescer.active_requests == 0

    def test_commit_failure_releases_waiters(self, wait_until):
        """Test a raising commit fails every caller promptly instead of hanging them."""
        coalescer = RequestCoalescer(timeout=None)
        loader = BlockingLoader(result="v")
        broken = ValueError("cannot store")

        def commit(flight, result):
            raise broken

        with ThreadPoolExecutor(max_workers=2) as pool:
            first = pool.submit(coalescer.run, "k", loader, None, commit)
            assert loader.started.wait(timeout=5)
            second = pool.submit(coalescer.run, "k", loader)
            assert wait_until(lambda: _waiters(coalescer) == 1)
            loader.release.set()
            for future in (first, second):
                with pytest.raises(LoadFailedError) as excinfo:
                    future.result(timeout=5)
                assert excinfo.value.cause is broken

        assert coalescer.active_requests == 0
        assert coalescer.run("k", lambda: "retry") == ("retry", CacheSource.LOADED)

    def test_waiter_timeout_does_not_cancel_load(self, wait_until):
        """Test a timed-out waiter leaves the load running."""
        coalescer = RequestCoalescer(timeout=0.05)
        loader = BlockingLoader(result="late")

        with ThreadPoolExecutor(max_workers=1) as pool:
            initiator = pool.submit(coalescer.run, "k", loader)
            assert loader.started.wait(timeout=5)

            with pytest.raises(LoadTimeoutError):
                coalescer.run("k", loader)
            assert coalescer.is_loading("k")

            loader.release.set()
            assert initiator.result(timeout=5) == ("late", CacheSource.LOADED)

        assert loader.calls == 1

    def test_independent_keys_load_in_parallel(self):
        """Test loads for different keys don't wait on each other."""
        coalescer = RequestCoalescer()
        slow = BlockingLoader(result="slow")

        with ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(coalescer.run, "a", slow)
            assert slow.started.wait(timeout=5)
            assert coalescer.run("b", lambda: "fast") == ("fast", CacheSource.LOADED)
            slow.release.set()
            future.result(timeout=5)
