"""Tests for the durable action queue and its flush pass."""

import asyncio
from functools import partial

import pytest

from conftest import settle
from swipe.errors import (
    ProviderHardFailure,
    QueueUnavailable,
    RateLimited,
    ValidationError,
)
from swipe.models import ActionType, FlushResult
from swipe.sync import DurableActionQueue, SqliteActionStore


class TestEnqueue:
    """Test intent creation and validation."""

    def test_enqueue_assigns_ids_in_order(self, queue):
        first = queue.enqueue(ActionType.TRASH, email_id="e1")
        second = queue.enqueue("block", sender_email="promo@shop.example")

        pending = queue.list_pending()
        assert [i.id for i in pending] == [first, second]
        assert pending[0].retry_count == 0
        assert pending[1].type == ActionType.BLOCK
        assert pending[1].target == "promo@shop.example"

    @pytest.mark.parametrize(
        "action, target",
        [
            (ActionType.TRASH, {"sender_email": "x@y.example"}),
            (ActionType.BLOCK, {"email_id": "e1"}),
            (ActionType.NUKE, {"sender_email": "x@y.example"}),
            (ActionType.UNSUBSCRIBE, {}),
        ],
    )
    def test_enqueue_requires_matching_target(self, queue, action, target):
        with pytest.raises(ValidationError):
            queue.enqueue(action, **target)
        assert queue.count() == 0

    def test_pending_count_callback(self, queue):
        counts = []
        queue.on_pending_count_changed(counts.append)

        intent_id = queue.enqueue(ActionType.TRASH, email_id="e1")
        queue.remove(intent_id)

        assert counts == [1, 0]

    def test_failing_callback_does_not_break_enqueue(self, queue):
        def boom(count):
            raise RuntimeError("listener bug")

        queue.on_pending_count_changed(boom)
        queue.enqueue(ActionType.TRASH, email_id="e1")

        assert queue.count() == 1

    def test_stats(self, queue):
        queue.enqueue(ActionType.TRASH, email_id="e1")
        retrying = queue.enqueue(ActionType.TRASH, email_id="e2")
        queue.enqueue(ActionType.NUKE, domain="shop.example")
        queue.increment_retry(retrying)

        stats = queue.get_stats()

        assert stats == {
            "available": True,
            "pending": 3,
            "retrying": 1,
            "by_type": {"trash": 2, "nuke": 1},
        }


class TestFlush:
    """Test replaying intents to the gateway."""

    @pytest.mark.asyncio
    async def test_flush_translates_intents_in_order(self, queue, gateway):
        queue.enqueue(ActionType.TRASH, email_id="e1")
        queue.enqueue(ActionType.UNSUBSCRIBE, email_id="e3")
        queue.enqueue(ActionType.BLOCK, sender_email="promo@shop.example")
        queue.enqueue(ActionType.NUKE, domain="news.example")

        result = await queue.flush()

        assert result == FlushResult(synced=4, failed=0, retried=0)
        assert gateway.calls == [
            ("trash", "e1"),
            ("mark_spam", "e3"),
            ("create_block_filter", "promo@shop.example"),
            ("create_block_filter", "news.example"),
        ]
        assert queue.count() == 0

    @pytest.mark.asyncio
    async def test_keep_syncs_without_provider_call(self, queue, gateway):
        queue.enqueue(ActionType.KEEP, email_id="e1")

        result = await queue.flush()

        assert result.synced == 1
        assert gateway.calls == []
        assert queue.count() == 0

    @pytest.mark.asyncio
    async def test_failed_intent_kept_with_retry_count(self, queue, gateway):
        failing = queue.enqueue(ActionType.TRASH, email_id="e1")
        queue.enqueue(ActionType.TRASH, email_id="e2")
        gateway.fail("trash", ProviderHardFailure(), target="e1")

        result = await queue.flush()

        assert result == FlushResult(synced=1, failed=0, retried=1)
        pending = queue.list_pending()
        assert [i.id for i in pending] == [failing]
        assert pending[0].retry_count == 1

    @pytest.mark.asyncio
    async def test_intent_evicted_after_max_retries(self, queue, gateway):
        """Verify a permanently failing intent is attempted at most max_retries times."""
        queue.enqueue(ActionType.TRASH, email_id="e1")
        gateway.fail("trash", ProviderHardFailure(), times=10)

        results = [await queue.flush() for _ in range(queue.max_retries + 1)]

        assert [r.retried for r in results] == [1, 1, 1, 0]
        assert results[-1].failed == 1
        assert queue.count() == 0
        assert len(gateway.calls_to("trash")) == queue.max_retries
        assert len(gateway.calls_to("trash")) <= queue.max_retries + 1

    @pytest.mark.asyncio
    async def test_rate_limit_charged_to_intent(self, queue, gateway, clock):
        """A 429 during replay costs one intent retry, not a scheduler backoff loop."""
        queue.enqueue(ActionType.TRASH, email_id="e1")
        gateway.fail("trash", RateLimited())

        result = await queue.flush()

        assert result.retried == 1
        assert queue.list_pending()[0].retry_count == 1
        assert len(gateway.calls_to("trash")) == 1
        assert clock.sleeps == []

        assert (await queue.flush()).synced == 1

    @pytest.mark.asyncio
    async def test_permanent_rate_limit_evicted_within_bound(self, queue, gateway):
        """Verify an always-429 intent is tried at most max_retries + 1 times and ends failed."""
        queue.enqueue(ActionType.TRASH, email_id="e1")
        gateway.fail("trash", RateLimited(), times=1000)

        results = [await queue.flush() for _ in range(queue.max_retries + 2)]

        assert len(gateway.calls_to("trash")) <= queue.max_retries + 1
        assert sum(r.failed for r in results) == 1
        assert sum(r.synced for r in results) == 0
        assert queue.count() == 0

    @pytest.mark.asyncio
    async def test_removed_mid_flush_is_not_sent(self, queue, gateway):
        """An intent removed after the pass started is skipped."""
        queue.enqueue(ActionType.TRASH, email_id="e1")
        cancelled = queue.enqueue(ActionType.TRASH, email_id="e2")
        gateway.hold = asyncio.Event()

        running = asyncio.create_task(queue.flush())
        await settle()
        assert queue.in_flight is not None
        queue.remove(cancelled)
        gateway.hold.set()
        result = await running

        assert result == FlushResult(synced=1)
        assert gateway.calls == [("trash", "e1")]
        assert queue.in_flight is None

    @pytest.mark.asyncio
    async def test_flush_skipped_while_offline(self, queue, gateway):
        queue.enqueue(ActionType.TRASH, email_id="e1")
        queue.set_connectivity_probe(lambda: False)

        result = await queue.flush()

        assert result == FlushResult()
        assert gateway.calls == []
        assert queue.count() == 1

    @pytest.mark.asyncio
    async def test_concurrent_flush_returns_empty(self, queue, gateway):
        """A second flush while one is running must not replay the same intents."""
        queue.enqueue(ActionType.TRASH, email_id="e1")
        gateway.hold = asyncio.Event()

        running = asyncio.create_task(queue.flush())
        await settle()
        assert queue.is_flushing

        second = await queue.flush()
        gateway.hold.set()
        first = await running

        assert second == FlushResult()
        assert first.synced == 1
        assert len(gateway.calls_to("trash")) == 1

    @pytest.mark.asyncio
    async def test_flush_works_on_snapshot(self, queue, gateway):
        """Intents enqueued mid-flush wait for the next pass."""
        queue.enqueue(ActionType.TRASH, email_id="e1")
        gateway.hold = asyncio.Event()

        running = asyncio.create_task(queue.flush())
        await settle()
        late = queue.enqueue(ActionType.TRASH, email_id="e2")
        gateway.hold.set()
        first = await running

        assert first.synced == 1
        assert [i.id for i in queue.list_pending()] == [late]

        second = await queue.flush()
        assert second.synced == 1
        assert queue.count() == 0

    @pytest.mark.asyncio
    async def test_scheduler_clear_interrupts_flush(self, queue, gateway, scheduler):
        """Cancelled jobs stop the pass without burning retries."""
        queue.enqueue(ActionType.TRASH, email_id="e1")
        queue.enqueue(ActionType.TRASH, email_id="e2")
        gateway.hold = asyncio.Event()

        # Occupy the scheduler so the flush's first job has to wait
        blocker = asyncio.create_task(scheduler.execute(partial(gateway.mark_spam, "x")))
        await settle()
        flushing = asyncio.create_task(queue.flush())
        await settle()

        assert scheduler.clear() == 1
        gateway.hold.set()
        result = await flushing
        await blocker

        assert result == FlushResult()
        assert queue.count() == 2
        assert all(i.retry_count == 0 for i in queue.list_pending())


class TestUnavailableStore:
    """Without storage the queue degrades to a no-op."""

    @pytest.fixture
    def broken_queue(self, tmp_path, scheduler, gateway):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        action_queue = DurableActionQueue(
            SqliteActionStore(blocker / "queue.db"), scheduler, gateway
        )
        action_queue.init()
        return action_queue

    @pytest.mark.asyncio
    async def test_unopenable_store(self, broken_queue, gateway):
        assert broken_queue.available is False
        assert broken_queue.list_pending() == []
        assert broken_queue.count() == 0
        assert broken_queue.clear() == 0
        assert await broken_queue.flush() == FlushResult()
        assert gateway.calls == []

        with pytest.raises(QueueUnavailable):
            broken_queue.enqueue(ActionType.TRASH, email_id="e1")

    def test_no_store_configured(self, scheduler, gateway):
        action_queue = DurableActionQueue(None, scheduler, gateway)
        action_queue.init()

        assert action_queue.available is False
        assert action_queue.get_stats()["available"] is False


class TestPersistence:
    """Queued intents survive a restart of the queue."""

    @pytest.mark.asyncio
    async def test_intents_replayed_after_restart(self, tmp_path, scheduler, gateway):
        db_path = tmp_path / "queue.db"

        queue1 = DurableActionQueue(SqliteActionStore(db_path), scheduler, gateway)
        queue1.init()
        queue1.enqueue(ActionType.TRASH, email_id="e1")
        queue1.enqueue(ActionType.BLOCK, sender_email="promo@shop.example")
        queue1._store.close()

        queue2 = DurableActionQueue(SqliteActionStore(db_path), scheduler, gateway)
        queue2.init()
        result = await queue2.flush()

        assert result.synced == 2
        assert gateway.calls == [
            ("trash", "e1"),
            ("create_block_filter", "promo@shop.example"),
        ]
