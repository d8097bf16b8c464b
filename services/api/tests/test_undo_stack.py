"""Tests for the snapshot undo stack."""

from playrank.services.types import SessionSnapshot
from playrank.services.undo import UndoStack


def test_lifo_order():
    stack: UndoStack[SessionSnapshot] = UndoStack()
    first = SessionSnapshot(low=0, high=9, comparison_count=0)
    second = SessionSnapshot(low=5, high=9, comparison_count=1)
    stack.push(first)
    stack.push(second)

    assert len(stack) == 2
    assert stack.peek() is second
    assert stack.pop() is second
    assert stack.pop() is first
    assert not stack


def test_pop_empty_returns_none():
    stack: UndoStack[int] = UndoStack()
    assert stack.pop() is None
    assert stack.peek() is None


def test_clear_and_iterate():
    stack: UndoStack[int] = UndoStack()
    for i in range(3):
        stack.push(i)
    assert list(stack) == [0, 1, 2]
    stack.clear()
    assert len(stack) == 0
