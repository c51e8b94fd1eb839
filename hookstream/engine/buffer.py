"""
EventBuffer — bounded per-webhook event history with FIFO eviction.

Not thread-safe on its own; the WebhookRegistry serializes access per webhook.
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")


class EventBuffer(Generic[T]):
    """
    Fixed-capacity sequence; pushing at capacity evicts the oldest element.

    Usage:
        buf = EventBuffer(capacity=3)
        for e in (1, 2, 3, 4):
            buf.push(e)
        buf.slice(10)  # -> [2, 3, 4]
    """

    def __init__(self, capacity: int = 100):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._items: Deque[T] = deque()
        self._evicted = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def evicted_count(self) -> int:
        """Events dropped by eviction since creation."""
        return self._evicted

    def push(self, item: T) -> Optional[T]:
        """Append ``item``; return the evicted element, if any."""
        self._items.append(item)
        evicted = None
        while len(self._items) > self._capacity:
            evicted = self._items.popleft()
            self._evicted += 1
        return evicted

    def latest(self) -> Optional[T]:
        """Most recent element, or None when empty."""
        return self._items[-1] if self._items else None

    def slice(self, limit: int) -> List[T]:
        """The last ``limit`` elements in arrival order."""
        if limit <= 0:
            return []
        if limit >= len(self._items):
            return list(self._items)
        return list(self._items)[-limit:]

    def find(self, predicate) -> Optional[T]:
        """Newest element matching ``predicate``."""
        for item in reversed(self._items):
            if predicate(item):
                return item
        return None

    def clear(self) -> None:
        self._items.clear()

    def resize(self, capacity: int) -> int:
        """Change capacity, evicting oldest elements. Returns number evicted."""
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        dropped = 0
        while len(self._items) > capacity:
            self._items.popleft()
            dropped += 1
        self._evicted += dropped
        return dropped

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def __repr__(self) -> str:
        return f"<EventBuffer {len(self._items)}/{self._capacity}>"
