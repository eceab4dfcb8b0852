"""
TTL policy: decides whether a stored entry is still live.
"""
import math
from typing import Optional

from .core import CacheEntry


# Special TTL values
NEVER_CACHE = 0.0         # Every lookup is a miss, nothing is stored
NEVER_EXPIRE = math.inf   # Only capacity eviction removes entries


def check_ttl(ttl_seconds: float) -> float:
    if ttl_seconds is None or math.isnan(ttl_seconds) or ttl_seconds < 0:
        raise ValueError(f"TTL must be >= 0 seconds, got {ttl_seconds!r}")
    return float(ttl_seconds)


class ExpiryPolicy:
    """
    Absolute or sliding expiry with a default TTL.

    Absolute expiry (the default) anchors the TTL at write time; sliding
    expiry anchors it at the last read, so reads extend an entry's life.
    Entries may carry their own ttl_seconds, which takes precedence.
    """

    def __init__(self, ttl_seconds: float = NEVER_EXPIRE, sliding: bool = False):
        self.ttl_seconds = check_ttl(ttl_seconds)
        self.sliding = sliding

    def ttl_for(self, entry: CacheEntry) -> float:
        if entry.ttl_seconds is not None:
            return entry.ttl_seconds
        return self.ttl_seconds

    def admits(self, ttl_seconds: Optional[float] = None) -> bool:
        """Whether a value stored with this TTL would be kept at all."""
        ttl = self.ttl_seconds if ttl_seconds is None else check_ttl(ttl_seconds)
        return ttl > 0

    def expires_at(self, entry: CacheEntry) -> float:
        anchor = entry.last_accessed_at if self.sliding else entry.created_at
        return anchor + self.ttl_for(entry)

    def is_expired(self, entry: CacheEntry, now: float) -> bool:
        ttl = self.ttl_for(entry)
        if ttl == NEVER_CACHE:
            return True
        if math.isinf(ttl):
            return False
        return now >= self.expires_at(entry)

    def remaining(self, entry: CacheEntry, now: float) -> float:
        """Seconds of life left (0 when expired, inf when never expiring)."""
        if self.is_expired(entry, now):
            return 0.0
        return self.expires_at(entry) - now

    def __repr__(self) -> str:
        mode = "sliding" if self.sliding else "absolute"
        return f"ExpiryPolicy(ttl_seconds={self.ttl_seconds}, {mode})"
