"""Snapshot stack used for exact rollback.

One entry is pushed per resolved step (a comparison inside a session, or a
whole placement inside a batch/rebuild). Popping returns the state exactly
as it was captured.
"""

from __future__ import annotations

from typing import Generic, Iterator, TypeVar

T = TypeVar("T")


class UndoStack(Generic[T]):
    """LIFO stack of immutable snapshots."""

    def __init__(self) -> None:
        self._items: list[T] = []

    def push(self, snapshot: T) -> None:
        self._items.append(snapshot)

    def pop(self) -> T | None:
        """Pop the latest snapshot, or None when empty."""
        if not self._items:
            return None
        return self._items.pop()

    def peek(self) -> T | None:
        return self._items[-1] if self._items else None

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)
