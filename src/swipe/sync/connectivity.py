"""Connectivity monitor that replays the durable queue on reconnect."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from swipe.models import FlushResult
from swipe.sync.queue import DurableActionQueue

logger = logging.getLogger(__name__)

RestoredHook = Callable[[], Awaitable[None]]


class ConnectivityMonitor:
    """Turns online/offline and visibility transitions into queue flushes.

    The monitor does not poll. Whatever runtime hosts the agent feeds it
    events through set_online() and set_visible() (a browser bridge, an OS
    network signal, or the CLI after a health check).

    Example:
        monitor = ConnectivityMonitor(queue)
        monitor.on_sync_complete(lambda r: print(r.synced))
        monitor.start()
        await monitor.set_online(True)
    """

    def __init__(
        self,
        queue: DurableActionQueue,
        online: bool = True,
        visible: bool = True,
    ) -> None:
        """Initialize the monitor.

        Args:
            queue: Queue to flush when connectivity returns
            online: Initial connectivity state
            visible: Initial foreground/visibility state
        """
        self._queue = queue
        self._online = online
        self._visible = visible
        self._started = False
        self.last_result: FlushResult | None = None

        self._restored_hooks: list[RestoredHook] = []
        self._sync_callbacks: list[Callable[[FlushResult], None]] = []

    @property
    def online(self) -> bool:
        return self._online

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def started(self) -> bool:
        return self._started

    def is_online(self) -> bool:
        """Connectivity probe handed to the queue and coordinator."""
        return self._online

    def start(self) -> None:
        """Register the queue-flush listener. Only the first call has effect."""
        if self._started:
            return
        self._started = True
        self.on_connectivity_restored(self._flush_queue)
        logger.debug("Connectivity monitor started, online=%s", self._online)

    def on_connectivity_restored(self, hook: RestoredHook) -> None:
        """Register an async hook run each time connectivity is restored."""
        self._restored_hooks.append(hook)

    def on_sync_complete(self, callback: Callable[[FlushResult], None]) -> None:
        """Register callback fired after a triggered flush that synced something."""
        self._sync_callbacks.append(callback)

    async def set_online(self, online: bool) -> None:
        """Feed an online/offline event."""
        was_online = self._online
        self._online = online

        if online and not was_online:
            logger.info("Connection restored, syncing")
            await self._restored()
        elif not online and was_online:
            logger.info("Connection lost")

    async def set_visible(self, visible: bool) -> None:
        """Feed a visibility event (app foregrounded or backgrounded)."""
        was_visible = self._visible
        self._visible = visible

        # Covers reconnects missed while asleep
        if visible and not was_visible and self._online:
            await self._restored()

    async def _restored(self) -> None:
        for hook in list(self._restored_hooks):
            try:
                await hook()
            except Exception:
                logger.exception("Connectivity hook failed")

    async def _flush_queue(self) -> None:
        result = await self._queue.flush()
        self.last_result = result
        if result.synced > 0:
            for callback in self._sync_callbacks:
                try:
                    callback(result)
                except Exception:
                    logger.exception("Sync complete callback failed")
