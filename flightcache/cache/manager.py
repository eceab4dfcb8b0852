"""
Cache façade: entry store + expiry policy + single-flight loading + write-back.
"""
import math
import threading
import logging
from typing import Dict, Optional, Callable, Any, Hashable

from .clock import Clock, SystemClock
from .core import CacheEntry, CacheSource
from .coalescer import MISSING, InFlightLoad, RequestCoalescer
from .expiry import ExpiryPolicy, check_ttl
from .store import EntryStore
from .writeback import WriteBackCoordinator

logger = logging.getLogger("flightcache.manager")

Loader = Callable[[Hashable], Any]


class CacheManager:
    """
    Main cache orchestration with:
    - Absolute or sliding TTL expiry, with per-entry overrides
    - Single-flight loading: one loader call per missing key at a time
    - Optional capacity bound with LRU eviction
    - Optional asynchronous write-back of puts to a backing store

    Constructed explicitly and passed by reference; call close() (or use it
    as a context manager) at shutdown.
    """

    def __init__(
        self,
        ttl_seconds: float = math.inf,
        max_entries: Optional[int] = None,
        negative_caching: bool = False,
        sliding_expiry: bool = False,
        wait_timeout: Optional[float] = 30.0,
        clock: Optional[Clock] = None,
        loader: Optional[Loader] = None,
        write_back: Optional[WriteBackCoordinator] = None,
        sweep_interval: float = 1.0,
    ):
        """
        Initialize the cache manager.

        Args:
            ttl_seconds: Default TTL (0 = never cache, inf = never expire)
            max_entries: Capacity bound, None for unbounded
            negative_caching: Store None results returned by loaders
            sliding_expiry: Reads extend an entry's life
            wait_timeout: Max seconds to wait on another caller's load
            clock: Time source (defaults to the monotonic system clock)
            loader: Default loader for get_or_load
            write_back: Coordinator that persists puts asynchronously
            sweep_interval: Min seconds between expiry sweeps run to make
                            room in a full cache
        """
        self._store = EntryStore(max_entries=max_entries)
        self._expiry = ExpiryPolicy(ttl_seconds=ttl_seconds, sliding=sliding_expiry)
        self._coalescer = RequestCoalescer(timeout=wait_timeout)
        self._clock = clock or SystemClock()
        self._loader = loader
        self._negative_caching = negative_caching
        self._write_back = write_back
        self._closed = False
        self._sweep_interval = sweep_interval
        self._last_sweep = -math.inf
        self._sweep_lock = threading.Lock()

        # Stats tracking
        self._stats_lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "loads": 0,
            "coalesced": 0,
            "load_failures": 0,
            "expirations": 0,
            "evictions": 0,
            "discarded_loads": 0,
        }

    @classmethod
    def from_settings(cls, settings=None, clock: Optional[Clock] = None, backing_store=None, **overrides):
        """
        Build a manager from CacheSettings.

        A SQLAlchemy backing store is created from backing_store_url when
        no store is passed and one is needed for read-through or write-back.
        """
        from config.settings import settings as default_settings

        settings = settings or default_settings

        if backing_store is None and settings.backing_store_url and (
            settings.read_through or settings.write_back_enabled
        ):
            from ..backing.sql import SQLAlchemyBackingStore
            backing_store = SQLAlchemyBackingStore(url=settings.backing_store_url)

        write_back = None
        if settings.write_back_enabled:
            if backing_store is None:
                raise ValueError("write_back_enabled requires a backing store")
            write_back = WriteBackCoordinator(
                backing_store,
                max_attempts=settings.write_back_max_attempts,
                backoff_multiplier=settings.write_back_backoff_multiplier,
                backoff_max=settings.write_back_backoff_max_seconds,
                max_workers=settings.write_back_workers,
            )

        options = dict(
            ttl_seconds=settings.ttl_seconds,
            max_entries=settings.max_entries,
            negative_caching=settings.negative_caching_enabled,
            sliding_expiry=settings.sliding_expiry,
            wait_timeout=settings.wait_timeout_seconds,
            clock=clock,
            loader=backing_store.get if (settings.read_through and backing_store) else None,
            write_back=write_back,
            sweep_interval=settings.sweep_interval_seconds,
        )
        options.update(overrides)
        return cls(**options)

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, key: Hashable, default: Any = None) -> Any:
        """
        Return the live cached value, or default if missing or expired.

        Never triggers a load.
        """
        value = self._lookup_live(key)
        if value is MISSING:
            self._count("misses")
            return default
        self._count("hits")
        return value

    def get_or_load(
        self,
        key: Hashable,
        loader: Optional[Loader] = None,
        ttl_seconds: Optional[float] = None,
    ) -> Any:
        """
        Return the cached value, loading it once if missing or expired.

        Concurrent callers for the same key share a single loader call and
        all receive its result or its failure.

        Args:
            key: Cache key
            loader: Called as loader(key); defaults to the manager's loader
            ttl_seconds: TTL for the loaded entry (overrides the default)

        Raises:
            LoadFailedError: The loader raised; nothing was cached
            LoadTimeoutError: Gave up waiting on another caller's load
            ValueError: ttl_seconds is negative (checked before any load)
        """
        if ttl_seconds is not None:
            check_ttl(ttl_seconds)
        loader = loader or self._loader
        if loader is None:
            raise ValueError("get_or_load needs a loader (none passed or configured)")

        value = self._lookup_live(key)
        if value is not MISSING:
            self._count("hits")
            logger.debug(f"CACHE HIT: {key!r}")
            return value

        logger.info(f"CACHE MISS: {key!r}")
        try:
            value, source = self._coalescer.run(
                key,
                load_fn=lambda: loader(key),
                probe=lambda: self._lookup_live(key),
                commit=lambda flight, result: self._commit_load(flight, result, ttl_seconds),
            )
        except Exception:
            self._count("load_failures")
            raise

        if source is CacheSource.HIT:
            self._count("hits")
        else:
            self._count("misses")
            self._count("loads" if source is CacheSource.LOADED else "coalesced")
        return value

    def _lookup_live(self, key: Hashable) -> Any:
        """Live value for key (touching it), or MISSING."""
        entry = self._store.lookup(key)
        if entry is None:
            return MISSING
        now = self._clock.now()
        if self._expiry.is_expired(entry, now):
            if self._store.discard(key, entry):
                self._count("expirations")
                logger.debug(f"CACHE EXPIRED: {key!r} [age={entry.age_seconds(now):.3f}s]")
            return MISSING
        self._store.touch(key, now)
        return entry.value

    def _commit_load(self, flight: InFlightLoad, result: Any, ttl_seconds: Optional[float]) -> None:
        """Store a finished load unless a put superseded it."""
        if flight.superseded:
            self._count("discarded_loads")
            logger.debug(f"Discarding superseded load for {flight.key!r}")
            return
        if result is None and not self._negative_caching:
            return
        if not self._expiry.admits(ttl_seconds):
            return
        self._insert(flight.key, result, ttl_seconds)

    # =========================================================================
    # Writes
    # =========================================================================

    def put(self, key: Hashable, value: Any, ttl_seconds: Optional[float] = None) -> int:
        """
        Publish a value unconditionally.

        An in-flight load for the key will not overwrite it. When a
        write-back coordinator is configured the write is queued for
        persistence.

        Returns:
            The new entry version (0 if the TTL means nothing is stored)

        Raises:
            ValueError: ttl_seconds is negative (nothing is changed)
        """
        admitted = self._expiry.admits(ttl_seconds)

        def write() -> int:
            if admitted:
                return self._insert(key, value, ttl_seconds).version
            self._store.remove(key)
            return 0

        # Under the coalescer lock: no load can register between the
        # supersede check and the insert
        version = self._coalescer.publish(key, write)

        if self._write_back is not None:
            self._write_back.submit(key, value, version or None)
        return version

    def _insert(self, key: Hashable, value: Any, ttl_seconds: Optional[float]) -> CacheEntry:
        now = self._clock.now()
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            last_accessed_at=now,
            ttl_seconds=ttl_seconds,
        )
        if self._store.is_full and key not in self._store:
            self._maybe_sweep(now)
        evicted = self._store.insert(key, entry)
        if evicted:
            self._count("evictions", len(evicted))
        return entry

    def _maybe_sweep(self, now: float) -> None:
        """
        Purge expired entries before LRU eviction, at most once per
        sweep_interval. Between sweeps a full cache falls back to plain
        LRU eviction.
        """
        with self._sweep_lock:
            if now - self._last_sweep < self._sweep_interval:
                return
            self._last_sweep = now
        self.purge_expired()

    def invalidate(self, key: Hashable) -> bool:
        """
        Remove a cached entry.

        An in-flight load for the key is not cancelled; its result is
        stored when it completes.

        Returns:
            True if an entry was found and removed
        """
        if self._store.remove(key) is not None:
            logger.info(f"Invalidated cache: {key!r}")
            return True
        return False

    def invalidate_where(self, predicate: Callable[[Hashable], bool]) -> int:
        """
        Invalidate all entries whose key matches a predicate.

        Returns:
            Number of entries invalidated
        """
        removed = 0
        for key in self._store.keys():
            if predicate(key) and self._store.remove(key) is not None:
                removed += 1
        if removed:
            logger.info(f"Invalidated {removed} matching entries")
        return removed

    def invalidate_all(self) -> int:
        """
        Clear all cache entries. In-flight loads are not cancelled.

        Returns:
            Number of entries cleared
        """
        count = self._store.clear()
        logger.info(f"Cleared {count} cache entries")
        return count

    def purge_expired(self) -> int:
        """
        Sweep out expired entries.

        Returns:
            Number of entries removed
        """
        now = self._clock.now()
        removed = 0
        for key in self._store.keys():
            entry = self._store.lookup(key)
            if entry is not None and self._expiry.is_expired(entry, now):
                if self._store.discard(key, entry):
                    removed += 1
        if removed:
            self._count("expirations", removed)
            logger.debug(f"Purged {removed} expired entries")
        return removed

    # =========================================================================
    # Introspection
    # =========================================================================

    def contains(self, key: Hashable) -> bool:
        """True if key has a live entry. Does not count as a read."""
        entry = self._store.lookup(key)
        return entry is not None and not self._expiry.is_expired(entry, self._clock.now())

    __contains__ = contains

    def entry_info(self, key: Hashable) -> Optional[CacheEntry]:
        """Detached copy of the stored entry (expired or not), or None."""
        entry = self._store.lookup(key)
        return entry.snapshot() if entry is not None else None

    def __len__(self) -> int:
        return len(self._store)

    @property
    def expiry(self) -> ExpiryPolicy:
        return self._expiry

    @property
    def write_back(self) -> Optional[WriteBackCoordinator]:
        return self._write_back

    def _count(self, name: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._stats[name] += amount

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
        lookups = stats["hits"] + stats["misses"]
        hit_rate = (stats["hits"] / lookups * 100) if lookups > 0 else 0

        result = {
            "entries": len(self._store),
            **stats,
            "hit_rate_percent": round(hit_rate, 1),
            "coalescer": self._coalescer.get_stats(),
        }
        if self._write_back is not None:
            result["write_back"] = self._write_back.get_stats()
        return result

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self, wait: bool = True) -> None:
        """Shut down the write-back path, waiting for queued writes."""
        if self._closed:
            return
        self._closed = True
        if self._write_back is not None:
            self._write_back.shutdown(wait=wait)

    def __enter__(self) -> "CacheManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
