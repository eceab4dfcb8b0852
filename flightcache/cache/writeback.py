"""
Asynchronous write-back of local cache writes to a backing store.

Writes to the same key are persisted strictly in the order they were
submitted; writes to different keys run in parallel on a thread pool.
"""
import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Hashable, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..backing.base import BackingStore
from ..errors import WriteBackClosedError, WriteBackError

logger = logging.getLogger("flightcache.writeback")


@dataclass
class PendingWrite:
    """A local write waiting to be persisted."""
    key: Hashable
    value: Any
    version: Optional[int] = None
    submitted_at: float = field(default_factory=time.monotonic)


@dataclass
class WriteBackFailure:
    """Delivered to the error sink once a write has exhausted its retries."""
    write: PendingWrite
    error: Exception
    attempts: int

    def as_exception(self) -> WriteBackError:
        return WriteBackError(self.write.key, self.write.version, self.error, self.attempts)


def _log_failure(failure: WriteBackFailure) -> None:
    logger.error(
        f"Write-back gave up on {failure.write.key!r} "
        f"(version {failure.write.version}) after {failure.attempts} attempts: "
        f"{failure.error}"
    )


class WriteBackCoordinator:
    """
    Per-key sequential write-back with bounded exponential-backoff retry.

    - submit() only enqueues; the caller never waits on the backing store
    - one drainer per key at a time, so a key's writes are never reordered
    - failures after max_attempts go to on_failure and the drainer moves on
    - on_success / on_failure are invoked exactly once per write
    """

    def __init__(
        self,
        store: BackingStore,
        max_attempts: int = 5,
        backoff_multiplier: float = 0.5,
        backoff_max: float = 30.0,
        max_workers: int = 4,
        on_success: Optional[Callable[[PendingWrite], None]] = None,
        on_failure: Optional[Callable[[WriteBackFailure], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the coordinator.

        Args:
            store: Backing store to persist into
            max_attempts: Attempts per write before reporting failure
            backoff_multiplier: Base of the exponential backoff, in seconds
            backoff_max: Upper bound for a single backoff wait
            max_workers: Thread pool size (keys persisted in parallel)
            on_success: Called with each persisted write
            on_failure: Error sink for writes that exhausted their retries
            sleep: Sleep function used between retries
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self._max_attempts = max_attempts
        self._backoff_multiplier = backoff_multiplier
        self._backoff_max = backoff_max
        self._on_success = on_success
        self._on_failure = on_failure or _log_failure
        self._sleep = sleep

        self._pool = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="cache-writeback",
        )
        self._queues: Dict[Hashable, Deque[PendingWrite]] = {}
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._closed = False

        self._stats = {
            "submitted": 0,
            "persisted": 0,
            "failed": 0,
            "retries": 0,
        }

    @property
    def store(self) -> BackingStore:
        return self._store

    def submit(self, key: Hashable, value: Any, version: Optional[int] = None) -> None:
        """
        Queue a write for asynchronous persistence.

        Raises:
            WriteBackClosedError: If the coordinator has been shut down
        """
        write = PendingWrite(key=key, value=value, version=version)
        with self._lock:
            if self._closed:
                raise WriteBackClosedError(key)
            self._stats["submitted"] += 1
            queue = self._queues.get(key)
            if queue is not None:
                # A drainer is already working on this key
                queue.append(write)
                return
            self._queues[key] = deque([write])
            # Still under the lock, so shutdown() can't close the pool in between
            self._pool.submit(self._drain, key)

    def _drain(self, key: Hashable) -> None:
        """Persist queued writes for one key until its queue is empty."""
        while True:
            with self._lock:
                queue = self._queues.get(key)
                if not queue:
                    self._queues.pop(key, None)
                    if not self._queues:
                        self._idle.notify_all()
                    return
                # Leave the write queued while persisting so submit() keeps appending
                write = queue[0]

            self._persist(write)

            with self._lock:
                queue.popleft()

    def _persist(self, write: PendingWrite) -> None:
        attempts = 0

        def attempt():
            nonlocal attempts
            attempts += 1
            self._store.put(write.key, write.value, write.version)

        retrying = Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._backoff_multiplier, max=self._backoff_max),
            retry=retry_if_exception_type(Exception),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            retrying(attempt)
        except Exception as e:
            with self._lock:
                self._stats["failed"] += 1
                self._stats["retries"] += attempts - 1
            self._notify(self._on_failure, WriteBackFailure(write=write, error=e, attempts=attempts))
            return

        with self._lock:
            self._stats["persisted"] += 1
            self._stats["retries"] += attempts - 1
        logger.debug(f"Wrote back {write.key!r} (version {write.version}, attempts={attempts})")
        if self._on_success is not None:
            self._notify(self._on_success, write)

    def _notify(self, sink: Callable[[Any], None], payload: Any) -> None:
        try:
            sink(payload)
        except Exception:
            logger.exception("Write-back sink raised")

    @property
    def pending_count(self) -> int:
        """Writes queued or being persisted."""
        with self._lock:
            return sum(len(q) for q in self._queues.values())

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every queued write has been persisted or reported.

        Returns:
            False if the timeout elapsed first
        """
        with self._idle:
            return self._idle.wait_for(lambda: not self._queues, timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting writes; optionally wait for queued ones."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if wait:
            self.flush()
        self._pool.shutdown(wait=wait)
        logger.info("Write-back coordinator shut down")

    def get_stats(self) -> Dict[str, Any]:
        """Get write-back statistics."""
        with self._lock:
            return {
                **self._stats,
                "pending": sum(len(q) for q in self._queues.values()),
                "active_keys": len(self._queues),
            }
