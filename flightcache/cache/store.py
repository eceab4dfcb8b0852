"""
Thread-safe entry storage with LRU ordering.
"""
import itertools
import logging
import threading
from collections import OrderedDict
from typing import Hashable, Iterator, List, Optional

from .core import CacheEntry

logger = logging.getLogger("flightcache.store")


class EntryStore:
    """
    Ordered mapping of key -> CacheEntry, most recently used last.

    - insert/remove/version increment are atomic with respect to each other
    - versions increase monotonically, even across remove and re-insert
    - keys() iterates a snapshot, so sweeps tolerate concurrent mutation
    - when max_entries is set, insert evicts least-recently-used entries
    """

    def __init__(self, max_entries: Optional[int] = None):
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._entries: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._max_entries = max_entries
        # Shared across keys so a key re-inserted after removal still moves forward
        self._versions = itertools.count(1)

    @property
    def max_entries(self) -> Optional[int]:
        return self._max_entries

    @property
    def is_full(self) -> bool:
        """True when another new key would force an eviction."""
        if self._max_entries is None:
            return False
        with self._lock:
            return len(self._entries) >= self._max_entries

    def lookup(self, key: Hashable) -> Optional[CacheEntry]:
        """Return the stored entry without touching it."""
        with self._lock:
            return self._entries.get(key)

    def touch(self, key: Hashable, now: float) -> bool:
        """Record a read: update last access time and LRU position."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            entry.last_accessed_at = now
            self._entries.move_to_end(key)
            return True

    def insert(self, key: Hashable, entry: CacheEntry) -> List[CacheEntry]:
        """
        Store an entry, replacing any existing one.

        The entry gets a version greater than any this store has issued,
        including versions of entries since removed.

        Returns:
            Entries evicted to stay within max_entries
        """
        with self._lock:
            self._entries.pop(key, None)
            entry.version = next(self._versions)
            self._entries[key] = entry

            evicted = []
            if self._max_entries is not None:
                while len(self._entries) > self._max_entries:
                    _, victim = self._entries.popitem(last=False)
                    evicted.append(victim)
            if evicted:
                logger.debug(f"Evicted {len(evicted)} LRU entries to fit {key!r}")
            return evicted

    def remove(self, key: Hashable) -> Optional[CacheEntry]:
        """Delete an entry. No-op if absent."""
        with self._lock:
            return self._entries.pop(key, None)

    def discard(self, key: Hashable, expected: CacheEntry) -> bool:
        """Remove the entry only if it is still `expected`."""
        with self._lock:
            if self._entries.get(key) is expected:
                del self._entries[key]
                return True
            return False

    def keys(self) -> Iterator[Hashable]:
        """Lazily iterate a snapshot of the keys taken at call time."""
        with self._lock:
            snapshot = list(self._entries.keys())
        return iter(snapshot)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries
