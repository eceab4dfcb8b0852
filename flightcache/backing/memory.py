"""In-process backing store, mainly for tests and local development."""

import threading
from typing import Any, Dict, Hashable, List, Optional, Tuple

from .base import BackingStore


class InMemoryBackingStore(BackingStore):
    """
    Dict-backed store that also records every write in order.

    The write history makes ordering guarantees observable:
        store.history == [("k", "v1", 1), ("k", "v2", 2)]
    """

    def __init__(self, initial: Optional[Dict[Hashable, Any]] = None):
        self._data: Dict[Hashable, Any] = dict(initial or {})
        self._versions: Dict[Hashable, Optional[int]] = {}
        self._history: List[Tuple[Hashable, Any, Optional[int]]] = []
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def put(self, key: Hashable, value: Any, version: Optional[int] = None) -> None:
        with self._lock:
            self._data[key] = value
            self._versions[key] = version
            self._history.append((key, value, version))

    def version_of(self, key: Hashable) -> Optional[int]:
        with self._lock:
            return self._versions.get(key)

    @property
    def history(self) -> List[Tuple[Hashable, Any, Optional[int]]]:
        """Copy of all writes, oldest first."""
        with self._lock:
            return list(self._history)

    def values_for(self, key: Hashable) -> List[Any]:
        """Values written for one key, in write order."""
        with self._lock:
            return [value for k, value, _ in self._history if k == key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
