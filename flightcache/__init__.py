"""
flightcache - thread-safe in-process cache with single-flight read-through
loading and asynchronous write-back.
"""
from .cache import (
    CacheEntry,
    CacheManager,
    CacheSource,
    Clock,
    EntryStore,
    ExpiryPolicy,
    ManualClock,
    RequestCoalescer,
    SystemClock,
    WriteBackCoordinator,
    WriteBackFailure,
)
from .backing import BackingStore, InMemoryBackingStore, SQLAlchemyBackingStore
from .errors import (
    CacheError,
    LoadFailedError,
    LoadTimeoutError,
    WriteBackClosedError,
    WriteBackError,
)

__version__ = "0.1.0"

__all__ = [
    "CacheEntry",
    "CacheManager",
    "CacheSource",
    "Clock",
    "EntryStore",
    "ExpiryPolicy",
    "ManualClock",
    "RequestCoalescer",
    "SystemClock",
    "WriteBackCoordinator",
    "WriteBackFailure",
    "BackingStore",
    "InMemoryBackingStore",
    "SQLAlchemyBackingStore",
    "CacheError",
    "LoadFailedError",
    "LoadTimeoutError",
    "WriteBackClosedError",
    "WriteBackError",
]
