"""Action engine coordinating scheduler, durable queue, monitor and coordinator."""

from __future__ import annotations

import logging
from typing import Any

from swipe.actions import MailCollection, OptimisticCoordinator, UndoStack
from swipe.config import Settings
from swipe.gateway import HttpMailGateway, MailGateway
from swipe.models import FlushResult
from swipe.sync import (
    ActionStore,
    ConnectivityMonitor,
    DurableActionQueue,
    RequestScheduler,
    SqliteActionStore,
)

logger = logging.getLogger(__name__)


class ActionEngine:
    """High-level entry point for the action layer.

    Builds one instance of every component per process and injects them
    into each other, so separate engines (e.g. in tests) never share state.

    Example:
        engine = ActionEngine(settings)
        await engine.start()
        await engine.coordinator.trash_email(item)
        await engine.stop()
    """

    def __init__(
        self,
        config: Settings,
        gateway: MailGateway | None = None,
        store: ActionStore | None = None,
        online: bool = True,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Settings instance with all configuration
            gateway: Mail gateway (defaults to HttpMailGateway on config.server_url)
            store: Action store (defaults to SQLite under config.data_path)
            online: Connectivity state assumed until the first event
        """
        self.config = config

        self.gateway: MailGateway = gateway or HttpMailGateway(
            server_url=config.server_url,
            max_retries=config.provider_max_retries,
            timeout=config.request_timeout,
        )
        self.store: ActionStore = store or SqliteActionStore(config.queue_db_path)

        self.scheduler = RequestScheduler(
            min_interval=config.min_interval,
            max_retries=config.rate_limit_max_retries,
            base_delay=config.base_delay,
            backoff_multiplier=config.backoff_multiplier,
        )
        self.queue = DurableActionQueue(
            self.store,
            self.scheduler,
            self.gateway,
            max_retries=config.queue_max_retries,
        )
        self.monitor = ConnectivityMonitor(self.queue, online=online)
        self.queue.set_connectivity_probe(self.monitor.is_online)

        self.collection = MailCollection()
        self.coordinator = OptimisticCoordinator(
            self.collection,
            self.scheduler,
            self.queue,
            self.gateway,
            undo_stack=UndoStack(config.undo_capacity),
            is_online=self.monitor.is_online,
            undo_batch_size=config.undo_batch_size,
        )

        self._running = False
        self._last_sync: FlushResult | None = None
        self.monitor.on_sync_complete(self._handle_sync_complete)
        self.queue.on_pending_count_changed(self._handle_count_change)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self, sync_pending: bool = True) -> None:
        """Open storage, register the reconnect listener and replay leftovers.

        Args:
            sync_pending: Flush intents left over from a previous run if online
        """
        if self._running:
            return
        self._running = True

        self.queue.init()
        self.monitor.start()
        self._log_start()

        if sync_pending and self.monitor.online and self.queue.count() > 0:
            self._last_sync = await self.queue.flush()

    def _log_start(self) -> None:
        logger.info(
            "Action engine started, data_dir=%s, queue_available=%s",
            self.config.data_path, self.queue.available,
        )

    async def stop(self) -> None:
        """Reject pending requests and release resources."""
        if not self._running:
            return
        self._running = False

        await self.scheduler.close()
        close = getattr(self.gateway, "close", None)
        if close is not None:
            await close()
        self.store.close()
        logger.info("Action engine stopped")

    async def sync_now(self) -> FlushResult:
        """Probe the backend, update connectivity and flush the queue.

        Returns:
            Result of the flush (empty if the backend is unreachable)
        """
        check_server = getattr(self.gateway, "check_server", None)
        reachable = await check_server() if check_server is not None else True

        if not reachable:
            await self.monitor.set_online(False)
            return FlushResult()

        if not self.monitor.online:
            # The transition itself triggers the flush
            self.monitor.last_result = None
            await self.monitor.set_online(True)
            self._last_sync = self.monitor.last_result or FlushResult()
            return self._last_sync

        self._last_sync = await self.queue.flush()
        return self._last_sync

    def _handle_sync_complete(self, result: FlushResult) -> None:
        self._last_sync = result

    def _handle_count_change(self, count: int) -> None:
        logger.debug("Pending count changed, pending=%d", count)

    def get_status(self) -> dict[str, Any]:
        """Get current engine status.

        Returns:
            Dictionary with connectivity, queue, scheduler and undo info
        """
        return {
            "running": self._running,
            "online": self.monitor.online,
            "queue": self.queue.get_stats(),
            "scheduler": {
                "queued": self.scheduler.queue_size,
                "processing": self.scheduler.is_processing,
            },
            "undo": {
                "depth": len(self.coordinator.undo_stack),
                "capacity": self.coordinator.undo_stack.capacity,
            },
            "blocked_senders": sorted(self.coordinator.blocked_senders),
            "last_sync": self._last_sync.to_dict() if self._last_sync else None,
            "data_dir": str(self.config.data_path),
        }
