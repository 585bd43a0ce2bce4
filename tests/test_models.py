"""Tests for data types, the mail collection and the undo stack."""

from datetime import datetime, timezone

import pytest

from conftest import make_items
from swipe.actions import MailCollection, UndoStack
from swipe.models import ActionIntent, ActionType, MailItem, UndoEntry, UndoKind, utcnow


def _entry(entry_id: str) -> UndoEntry:
    return UndoEntry(
        id=entry_id,
        kind=UndoKind.TRASH,
        affected_email_ids=(entry_id,),
        created_at=utcnow(),
    )


class TestMailItem:
    def test_domain_derived_from_sender(self):
        item = MailItem(id="e1", sender="Deals@News.Example")
        assert item.sender_domain == "news.example"
        assert item.from_sender("deals@news.example")
        assert item.from_domain("NEWS.example")

    def test_from_backend_json(self):
        item = MailItem.from_dict({
            "id": 42,
            "sender": "a@b.example",
            "senderDomain": "b.example",
            "receivedAt": "2026-01-24T12:00:00Z",
        })
        assert item.id == "42"
        assert item.received_at == datetime(2026, 1, 24, 12, tzinfo=timezone.utc)


class TestActionIntent:
    def test_record_round_trip_keeps_target(self):
        intent = ActionIntent(
            id="i1",
            type=ActionType.NUKE,
            created_at=utcnow(),
            retry_count=2,
            domain="shop.example",
        )

        restored = ActionIntent.from_record(intent.to_record())

        assert restored == intent
        assert restored.target == "shop.example"


class TestMailCollection:
    def test_restore_puts_items_back_in_place(self):
        collection = MailCollection(make_items())
        changes = []
        collection.on_change(lambda: changes.append(len(collection)))

        removed = collection.remove_ids(["e2", "e4"])
        assert collection.ids == ["e1", "e3"]

        assert collection.restore(removed) == 2
        assert collection.ids == ["e1", "e2", "e3", "e4"]
        assert changes == [2, 4]

    def test_restore_skips_items_already_present(self):
        collection = MailCollection(make_items())
        removed = collection.remove_ids(["e1"])
        collection.replace_all(make_items())

        assert collection.restore(removed) == 0
        assert len(collection) == 4

    def test_remove_unknown_ids(self):
        collection = MailCollection(make_items())
        assert collection.remove_ids(["missing"]) == []
        assert len(collection) == 4

    def test_lookups(self):
        collection = MailCollection(make_items())
        assert [i.id for i in collection.by_sender("DEALS@news.example")] == ["e1", "e2"]
        assert [i.id for i in collection.by_domain("shop.example")] == ["e3", "e4"]
        assert "e3" in collection


class TestUndoStack:
    def test_lifo(self):
        stack = UndoStack()
        stack.push(_entry("a"))
        stack.push(_entry("b"))

        assert stack.pop().id == "b"
        assert stack.pop().id == "a"
        assert stack.pop() is None

    def test_capacity_drops_oldest(self):
        stack = UndoStack(capacity=2)
        for entry_id in ("a", "b", "c"):
            stack.push(_entry(entry_id))

        assert [e.id for e in stack.entries] == ["b", "c"]
        assert "a" not in stack

    def test_attach_handle_replaces_entry(self):
        stack = UndoStack()
        stack.push(_entry("a"))

        assert stack.attach_handle("a", "filter-9") is True
        assert stack.attach_handle("gone", "filter-9") is False
        assert stack.peek().server_handle == "filter-9"

    def test_discard(self):
        stack = UndoStack()
        stack.push(_entry("a"))
        stack.push(_entry("b"))

        assert stack.discard("a").id == "a"
        assert stack.discard("a") is None
        assert [e.id for e in stack.entries] == ["b"]

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            UndoStack(capacity=0)
