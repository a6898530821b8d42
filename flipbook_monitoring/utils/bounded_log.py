"""
Bounded in-memory log used for metrics, console and network buffers.
"""
from collections import deque
from typing import Callable, Deque, Generic, Iterator, List, TypeVar

T = TypeVar("T")


class BoundedLog(Generic[T]):
    """
    Append-only sequence that evicts its oldest entries on overflow.

    When an append pushes the length past ``max_entries`` the oldest entries
    are dropped until ``retain`` remain, so ``BoundedLog(1000, 500)`` holds at
    most 1000 records and keeps the newest 500 after a trim.
    """

    def __init__(self, max_entries: int, retain: int):
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        if not 0 <= retain <= max_entries:
            raise ValueError("retain must be between 0 and max_entries")
        self.max_entries = max_entries
        self.retain = retain
        self._items: Deque[T] = deque()

    def append(self, item: T) -> None:
        self._items.append(item)
        if len(self._items) > self.max_entries:
            while len(self._items) > self.retain:
                self._items.popleft()

    def filter_in_place(self, predicate: Callable[[T], bool]) -> int:
        """Keep only the items matching ``predicate``; returns how many were removed."""
        before = len(self._items)
        self._items = deque(item for item in self._items if predicate(item))
        return before - len(self._items)

    def clear(self) -> None:
        self._items.clear()

    def snapshot(self) -> List[T]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))
