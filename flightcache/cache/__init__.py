"""
In-process cache with TTL expiry, single-flight loading, and write-back.
"""
from .core import CacheEntry, CacheSource
from .clock import Clock, SystemClock, ManualClock
from .store import EntryStore
from .expiry import ExpiryPolicy, NEVER_CACHE, NEVER_EXPIRE
from .coalescer import InFlightLoad, RequestCoalescer
from .writeback import PendingWrite, WriteBackCoordinator, WriteBackFailure
from .manager import CacheManager

__all__ = [
    # Core types
    "CacheEntry",
    "CacheSource",
    # Time
    "Clock",
    "SystemClock",
    "ManualClock",
    # Storage and expiry
    "EntryStore",
    "ExpiryPolicy",
    "NEVER_CACHE",
    "NEVER_EXPIRE",
    # Coalescing
    "InFlightLoad",
    "RequestCoalescer",
    # Write-back
    "PendingWrite",
    "WriteBackCoordinator",
    "WriteBackFailure",
    # Manager
    "CacheManager",
]
