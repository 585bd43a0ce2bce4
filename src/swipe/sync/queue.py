"""Durable queue of pending mail actions, replayed on reconnect.

Actions that could not be sent right away (offline, network down) are
persisted here and replayed through the RequestScheduler by flush().
Delivery is at-least-once: an intent is only removed after the provider
accepted it, so a crash mid-flush replays it. That is safe because every
gateway mutation is idempotent on the provider side.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable

from swipe.errors import QueueUnavailable, RequestCancelled, StoreUnavailable, ValidationError
from swipe.gateway.base import MailGateway
from swipe.logging import (
    log_action_evicted,
    log_action_queued,
    log_action_synced,
    log_sync_complete,
)
from swipe.models import ActionIntent, ActionType, FlushResult, utcnow
from swipe.sync.scheduler import Operation, RequestScheduler
from swipe.sync.store import ActionStore

logger = logging.getLogger(__name__)

# Which target field each action type needs
_TARGET_FIELD = {
    ActionType.TRASH: "email_id",
    ActionType.UNSUBSCRIBE: "email_id",
    ActionType.KEEP: "email_id",
    ActionType.BLOCK: "sender_email",
    ActionType.NUKE: "domain",
}


class DurableActionQueue:
    """Persistent, ordered queue of ActionIntents with retry accounting.

    If the store cannot be opened the queue degrades to a no-op: reads
    return nothing, enqueue() raises QueueUnavailable, and callers fall
    back to sending actions directly.

    Example:
        queue = DurableActionQueue(SqliteActionStore(path), scheduler, gateway)
        queue.init()
        queue.enqueue(ActionType.TRASH, email_id="18c2f")
        result = await queue.flush()
    """

    MAX_RETRIES = 3

    def __init__(
        self,
        store: ActionStore | None,
        scheduler: RequestScheduler,
        gateway: MailGateway,
        max_retries: int = MAX_RETRIES,
        is_online: Callable[[], bool] | None = None,
    ) -> None:
        """Initialize the queue. Call init() before use.

        Args:
            store: Backing store, or None when the runtime has no storage
            scheduler: Scheduler every replayed call goes through
            gateway: Mail provider gateway
            max_retries: Failed flush attempts before an intent is evicted
            is_online: Connectivity probe; flush() is skipped while it is False
        """
        self._store = store
        self._scheduler = scheduler
        self._gateway = gateway
        self.max_retries = max_retries
        self._is_online = is_online

        self._available = False
        self._initialized = False
        self._flush_lock = asyncio.Lock()
        self._in_flight: str | None = None
        self._count_callbacks: list[Callable[[int], None]] = []

    @property
    def available(self) -> bool:
        """True when intents are actually persisted."""
        return self._available

    @property
    def is_flushing(self) -> bool:
        return self._flush_lock.locked()

    @property
    def in_flight(self) -> str | None:
        """Id of the intent a running flush has handed to the scheduler."""
        return self._in_flight

    def init(self) -> None:
        """Open the backing store. Idempotent; never raises."""
        if self._initialized:
            return
        self._initialized = True

        if self._store is None:
            logger.warning("No action store configured, offline queue disabled")
            return

        try:
            self._store.open()
        except StoreUnavailable as e:
            logger.warning("Action store unavailable, offline queue disabled: %s", e)
            return

        self._available = True
        logger.info("Action queue initialized, pending=%d", self._store.count())

    def set_connectivity_probe(self, is_online: Callable[[], bool]) -> None:
        self._is_online = is_online

    def on_pending_count_changed(self, callback: Callable[[int], None]) -> None:
        """Register callback fired with the new pending count after changes."""
        self._count_callbacks.append(callback)

    def _notify_count(self) -> None:
        count = self.count()
        for callback in self._count_callbacks:
            try:
                callback(count)
            except Exception:
                logger.exception("Pending count callback failed")

    def enqueue(
        self,
        action_type: ActionType | str,
        *,
        email_id: str | None = None,
        sender_email: str | None = None,
        domain: str | None = None,
        reason: str = "offline",
    ) -> str:
        """Persist a new intent and return its id.

        Args:
            action_type: What to do once back online
            email_id: Target message (trash, unsubscribe, keep)
            sender_email: Target sender (block)
            domain: Target domain (nuke)
            reason: Why the action was queued, for the audit log

        Returns:
            Queue id of the intent (UUID)

        Raises:
            ValidationError: The target required by action_type is missing
            QueueUnavailable: The queue has no backing store
        """
        action_type = ActionType(action_type)
        targets = {"email_id": email_id, "sender_email": sender_email, "domain": domain}
        required = _TARGET_FIELD[action_type]
        if not targets[required]:
            raise ValidationError(f"{action_type.value} requires {required}")

        if not self._available:
            raise QueueUnavailable()

        intent = ActionIntent(
            id=str(uuid.uuid4()),
            type=action_type,
            created_at=utcnow(),
            retry_count=0,
            **{required: targets[required]},
        )
        self._store.add(intent.to_record())
        log_action_queued(logger, intent.id, action_type.value, reason)
        self._notify_count()
        return intent.id

    def list_pending(self) -> list[ActionIntent]:
        """Return pending intents in insertion order."""
        if not self._available:
            return []
        return [ActionIntent.from_record(r) for r in self._store.get_all()]

    def get(self, intent_id: str) -> ActionIntent | None:
        if not self._available:
            return None
        record = self._store.get(intent_id)
        return ActionIntent.from_record(record) if record else None

    def remove(self, intent_id: str) -> None:
        """Drop an intent; no-op if it is not queued."""
        if not self._available:
            return
        self._store.delete(intent_id)
        self._notify_count()

    def increment_retry(self, intent_id: str) -> None:
        """Record one failed attempt; no-op if the intent is not queued."""
        if not self._available:
            return
        self._store.increment_retry(intent_id)

    def count(self) -> int:
        if not self._available:
            return 0
        return self._store.count()

    def clear(self) -> int:
        """Drop every pending intent. Returns how many were dropped."""
        if not self._available:
            return 0
        dropped = self._store.count()
        self._store.clear()
        logger.info("Action queue cleared, dropped=%d", dropped)
        self._notify_count()
        return dropped

    def _operation_for(self, intent: ActionIntent) -> Operation | None:
        """Translate an intent into its gateway call (None for keep)."""
        gateway = self._gateway
        if intent.type == ActionType.TRASH:
            return lambda: gateway.trash([intent.email_id])
        if intent.type == ActionType.UNSUBSCRIBE:
            return lambda: gateway.mark_spam(intent.email_id)
        if intent.type == ActionType.BLOCK:
            return lambda: gateway.create_block_filter(sender=intent.sender_email)
        if intent.type == ActionType.NUKE:
            return lambda: gateway.create_block_filter(domain=intent.domain)
        # Keep is local-only
        return None

    async def flush(self) -> FlushResult:
        """Attempt every currently pending intent once.

        Works on a snapshot: intents enqueued while the pass runs wait for
        the next flush, and intents removed while it runs are skipped. A
        flush that starts while another is running returns an empty result
        instead of replaying the same intents twice.

        Each intent gets one provider call per pass. A 429 is not retried
        inside the scheduler but charged to the intent's retry_count, so an
        intent is attempted at most max_retries times before eviction.

        Returns:
            FlushResult(synced, failed, retried) where failed counts evicted
            intents and retried counts intents left for the next pass
        """
        if self._flush_lock.locked():
            logger.debug("Flush already running, skipping")
            return FlushResult()

        async with self._flush_lock:
            result = FlushResult()
            if not self._available:
                return result
            if self._is_online is not None and not self._is_online():
                logger.info("Offline, skipping sync")
                return result

            pending = self.list_pending()
            if not pending:
                return result

            logger.info("Syncing pending actions, count=%d", len(pending))

            for intent in pending:
                if self._store.get(intent.id) is None:
                    # Cancelled (e.g. undone) after the snapshot was taken
                    continue

                if intent.retry_count >= self.max_retries:
                    self._store.delete(intent.id)
                    result.failed += 1
                    log_action_evicted(logger, intent.id, intent.type.value, intent.retry_count)
                    continue

                operation = self._operation_for(intent)
                self._in_flight = intent.id
                try:
                    if operation is not None:
                        await self._scheduler.execute(operation, max_retries=0)
                except RequestCancelled:
                    # Session teardown; leave the rest for the next session
                    logger.info("Sync interrupted by scheduler clear")
                    break
                except Exception as e:
                    self._store.increment_retry(intent.id)
                    result.retried += 1
                    logger.warning(
                        "Sync failed, intent_id=%s, action=%s, attempt=%d, error=%s",
                        intent.id, intent.type.value, intent.retry_count + 1, e,
                    )
                else:
                    self._store.delete(intent.id)
                    result.synced += 1
                    log_action_synced(logger, intent.id, intent.type.value)
                finally:
                    self._in_flight = None

            log_sync_complete(logger, result.synced, result.failed, result.retried)
            if result.synced or result.failed:
                self._notify_count()
            return result

    def get_stats(self) -> dict[str, Any]:
        """Queue statistics for status output."""
        pending = self.list_pending()
        by_type: dict[str, int] = {}
        for intent in pending:
            by_type[intent.type.value] = by_type.get(intent.type.value, 0) + 1
        return {
            "available": self._available,
            "pending": len(pending),
            "retrying": sum(1 for i in pending if i.retry_count > 0),
            "by_type": by_type,
        }
