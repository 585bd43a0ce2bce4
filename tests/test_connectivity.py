"""Tests for the connectivity monitor driving queue replay."""

import pytest

from swipe.models import ActionType, FlushResult
from swipe.sync import ConnectivityMonitor


@pytest.fixture
def offline_monitor(queue):
    monitor = ConnectivityMonitor(queue, online=False)
    queue.set_connectivity_probe(monitor.is_online)
    monitor.start()
    return monitor


class TestReconnect:
    """Test flushing when the connection comes back."""

    @pytest.mark.asyncio
    async def test_offline_actions_synced_on_reconnect(self, offline_monitor, queue, gateway):
        """Verify three actions queued offline all reach the provider after reconnect."""
        synced = []
        offline_monitor.on_sync_complete(synced.append)

        queue.enqueue(ActionType.TRASH, email_id="e1")
        queue.enqueue(ActionType.TRASH, email_id="e2")
        queue.enqueue(ActionType.BLOCK, sender_email="promo@shop.example")

        assert await queue.flush() == FlushResult()
        assert gateway.calls == []

        await offline_monitor.set_online(True)

        assert queue.count() == 0
        assert len(gateway.calls) == 3
        assert offline_monitor.last_result == FlushResult(synced=3)
        assert synced == [FlushResult(synced=3)]

    @pytest.mark.asyncio
    async def test_going_offline_does_not_flush(self, queue, gateway):
        monitor = ConnectivityMonitor(queue, online=True)
        monitor.start()
        queue.enqueue(ActionType.TRASH, email_id="e1")

        await monitor.set_online(False)

        assert gateway.calls == []
        assert monitor.online is False

    @pytest.mark.asyncio
    async def test_repeated_online_event_does_not_flush(self, queue, gateway):
        monitor = ConnectivityMonitor(queue, online=True)
        monitor.start()
        queue.enqueue(ActionType.TRASH, email_id="e1")

        await monitor.set_online(True)

        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_sync_callback_skipped_when_nothing_synced(self, offline_monitor):
        calls = []
        offline_monitor.on_sync_complete(calls.append)

        await offline_monitor.set_online(True)

        assert calls == []
        assert offline_monitor.last_result == FlushResult()


class TestVisibility:
    """Test flushing when the app returns to the foreground."""

    @pytest.mark.asyncio
    async def test_becoming_visible_flushes_when_online(self, queue, gateway):
        monitor = ConnectivityMonitor(queue, online=True, visible=False)
        monitor.start()
        queue.enqueue(ActionType.TRASH, email_id="e1")

        await monitor.set_visible(True)

        assert gateway.calls == [("trash", "e1")]
        assert queue.count() == 0

    @pytest.mark.asyncio
    async def test_becoming_visible_while_offline_waits(self, queue, gateway):
        monitor = ConnectivityMonitor(queue, online=False, visible=False)
        monitor.start()
        queue.enqueue(ActionType.TRASH, email_id="e1")

        await monitor.set_visible(True)

        assert gateway.calls == []
        assert queue.count() == 1


class TestRegistration:
    """The flush listener is registered once per monitor."""

    @pytest.mark.asyncio
    async def test_start_twice_flushes_once(self, queue, monkeypatch):
        flushes = 0
        original_flush = queue.flush

        async def counting_flush():
            nonlocal flushes
            flushes += 1
            return await original_flush()

        monkeypatch.setattr(queue, "flush", counting_flush)

        monitor = ConnectivityMonitor(queue, online=False)
        monitor.start()
        monitor.start()
        assert monitor.started

        await monitor.set_online(True)

        assert flushes == 1

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_stop_flush(self, offline_monitor, queue):
        async def broken_hook():
            raise RuntimeError("hook bug")

        offline_monitor.on_connectivity_restored(broken_hook)
        queue.enqueue(ActionType.TRASH, email_id="e1")

        await offline_monitor.set_online(True)

        assert queue.count() == 0
