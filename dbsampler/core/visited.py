"""Run-scoped dedup of resolved rows."""

import threading
from typing import Any, Iterator, Set

from .models import VisitedKey


class VisitedSet:
    """Set of ``(table, column, value)`` keys already resolved in one run.

    A key is added before its row is fetched, so a cycle in the foreign key
    graph reaches the key a second time and stops there. Each sampling run
    builds its own instance; nothing is shared between runs. Access is
    serialised so anchors may be expanded from several threads.
    """

    def __init__(self):
        self._keys: Set[VisitedKey] = set()
        self._lock = threading.Lock()

    def add(self, table: str, column: str, value: Any) -> bool:
        """Mark a key visited; returns False when it already was."""
        key = VisitedKey.of(table, column, value)
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def contains(self, table: str, column: str, value: Any) -> bool:
        key = VisitedKey.of(table, column, value)
        with self._lock:
            return key in self._keys

    def __contains__(self, key: VisitedKey) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def __iter__(self) -> Iterator[VisitedKey]:
        with self._lock:
            return iter(list(self._keys))

    def clear(self) -> None:
        with self._lock:
            self._keys.clear()
