"""Backing store abstraction for read-through loads and write-back.

A backing store is the slower, authoritative system behind the cache
(a database table, a remote service). The cache only needs get and put
by key; everything else belongs to the embedding application.
"""

from abc import ABC, abstractmethod
from typing import Any, Hashable, Optional


class BackingStore(ABC):
    """
    Abstract base class for backing stores.

    Implementations must be safe to call from several threads: the
    write-back coordinator persists different keys in parallel.
    """

    @abstractmethod
    def get(self, key: Hashable) -> Optional[Any]:
        """
        Fetch the authoritative value for a key.

        Returns:
            The stored value, or None if the key is unknown

        Note:
            Signature matches the cache loader contract, so `store.get`
            can be passed directly as a read-through loader.
        """
        pass

    @abstractmethod
    def put(self, key: Hashable, value: Any, version: Optional[int] = None) -> None:
        """
        Persist a value.

        Args:
            key: Cache key
            value: Value to persist
            version: Cache entry version that produced this write

        Raises:
            Exception: Any failure; the write-back coordinator retries it
        """
        pass

    def close(self) -> None:
        """Release any held resources."""
        pass

    @property
    def store_name(self) -> str:
        return type(self).__name__
