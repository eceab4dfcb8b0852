"""
Core cache data structures.
"""
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Hashable, Optional


class CacheSource(Enum):
    """How a get_or_load call was satisfied."""
    HIT = "hit"               # Live entry already in the store
    LOADED = "loaded"         # This caller ran the loader
    COALESCED = "coalesced"   # Waited on another caller's load


@dataclass
class CacheEntry:
    """
    A cached value with the metadata used for expiry, LRU ordering
    and write-back versioning.

    Timestamps come from the cache's injected clock, not wall time.
    """
    key: Hashable
    value: Any
    created_at: float
    last_accessed_at: float
    version: int = 1
    ttl_seconds: Optional[float] = None  # Overrides the policy default

    def age_seconds(self, now: float) -> float:
        """Seconds since the entry was stored."""
        return now - self.created_at

    def idle_seconds(self, now: float) -> float:
        """Seconds since the entry was last read."""
        return now - self.last_accessed_at

    def snapshot(self) -> "CacheEntry":
        """Detached copy safe to hand out to callers."""
        return replace(self)

    def to_dict(self) -> dict:
        """Convert to a plain dict (value excluded)."""
        return {
            "key": self.key,
            "createdAt": self.created_at,
            "lastAccessedAt": self.last_accessed_at,
            "version": self.version,
            "ttl": self.ttl_seconds,
        }
