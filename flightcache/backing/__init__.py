"""
Backing stores consumed by read-through loads and the write-back path.
"""
from .base import BackingStore
from .memory import InMemoryBackingStore
from .sql import SQLAlchemyBackingStore, CacheRecord, encode_key

__all__ = [
    "BackingStore",
    "InMemoryBackingStore",
    "SQLAlchemyBackingStore",
    "CacheRecord",
    "encode_key",
]
