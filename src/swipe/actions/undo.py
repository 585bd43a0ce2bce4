"""Bounded LIFO stack of undo entries."""

from __future__ import annotations

import dataclasses
from collections import deque

from swipe.models import UndoEntry

DEFAULT_CAPACITY = 10


class UndoStack:
    """Keeps the most recent `capacity` undo entries.

    Pushing past capacity silently drops the oldest entry. Entries can only
    be popped from the top; there is no indexed undo.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: deque[UndoEntry] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    @property
    def entries(self) -> tuple[UndoEntry, ...]:
        """Entries oldest first."""
        return tuple(self._entries)

    def push(self, entry: UndoEntry) -> None:
        self._entries.append(entry)

    def pop(self) -> UndoEntry | None:
        """Remove and return the newest entry, or None when empty."""
        if not self._entries:
            return None
        return self._entries.pop()

    def peek(self) -> UndoEntry | None:
        return self._entries[-1] if self._entries else None

    def attach_handle(self, entry_id: str, server_handle: str) -> bool:
        """Record the provider's filter id on a still-reachable entry.

        Returns:
            False if the entry was already popped or pushed out
        """
        for index, entry in enumerate(self._entries):
            if entry.id == entry_id:
                self._entries[index] = dataclasses.replace(entry, server_handle=server_handle)
                return True
        return False

    def discard(self, entry_id: str) -> UndoEntry | None:
        """Drop the entry of a mutation that was rolled back."""
        for entry in self._entries:
            if entry.id == entry_id:
                self._entries.remove(entry)
                return entry
        return None

    def __contains__(self, entry_id: object) -> bool:
        return any(entry.id == entry_id for entry in self._entries)

    def clear(self) -> None:
        self._entries.clear()
