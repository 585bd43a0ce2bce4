"""Caller-visible email collection mutated optimistically."""

from __future__ import annotations

from typing import Callable, Iterable, Iterator

from swipe.models import MailItem

RemovedItems = list[tuple[int, MailItem]]


class MailCollection:
    """Ordered list of MailItems shown to the user.

    Removals remember the index each item occupied so a failed action can
    put items back exactly where they were.
    """

    def __init__(self, items: Iterable[MailItem] = ()) -> None:
        self._items: list[MailItem] = list(items)
        self._change_callbacks: list[Callable[[], None]] = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[MailItem]:
        return iter(list(self._items))

    def __contains__(self, email_id: object) -> bool:
        return any(item.id == email_id for item in self._items)

    @property
    def items(self) -> tuple[MailItem, ...]:
        return tuple(self._items)

    @property
    def ids(self) -> list[str]:
        return [item.id for item in self._items]

    def on_change(self, callback: Callable[[], None]) -> None:
        self._change_callbacks.append(callback)

    def _changed(self) -> None:
        for callback in self._change_callbacks:
            callback()

    def by_sender(self, sender: str) -> list[MailItem]:
        return [item for item in self._items if item.from_sender(sender)]

    def by_domain(self, domain: str) -> list[MailItem]:
        return [item for item in self._items if item.from_domain(domain)]

    def remove_ids(self, ids: Iterable[str]) -> RemovedItems:
        """Remove items by id and return (original_index, item) pairs."""
        wanted = set(ids)
        removed: RemovedItems = []
        kept: list[MailItem] = []
        for index, item in enumerate(self._items):
            if item.id in wanted:
                removed.append((index, item))
            else:
                kept.append(item)
        if removed:
            self._items = kept
            self._changed()
        return removed

    def restore(self, removed: RemovedItems) -> int:
        """Re-insert previously removed items at their original positions.

        Items already present (e.g. after a refresh) are skipped.

        Returns:
            Number of items re-inserted
        """
        present = {item.id for item in self._items}
        restored = 0
        for index, item in sorted(removed, key=lambda pair: pair[0]):
            if item.id in present:
                continue
            self._items.insert(min(index, len(self._items)), item)
            present.add(item.id)
            restored += 1
        if restored:
            self._changed()
        return restored

    def replace_all(self, items: Iterable[MailItem]) -> None:
        """Replace the contents with a fresh copy from the source of truth."""
        self._items = list(items)
        self._changed()
