"""Optimistic state coordinator: apply now, confirm later, undo on demand.

Every action runs in two phases:

1. stage() - synchronous, cannot fail. Removes the affected emails from
   the visible collection and pushes an UndoEntry describing how to
   reverse the action.
2. confirm() - asynchronous, can fail. Sends the action through the
   RequestScheduler when online, or hands it to the DurableActionQueue
   when offline. A terminal failure of a direct send consumes the undo
   entry and puts the emails back.

Actions handed to the durable queue are trusted locally from then on;
if replay later fails, nothing is reverted until the next refresh.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Iterable

from swipe.actions.collection import MailCollection, RemovedItems
from swipe.actions.undo import UndoStack
from swipe.errors import NetworkUnavailable, UndoImpossible, ValidationError
from swipe.gateway.base import MailGateway
from swipe.logging import log_undo
from swipe.models import (
    ActionOutcome,
    ActionState,
    ActionType,
    MailItem,
    UndoEntry,
    UndoKind,
    utcnow,
)
from swipe.sync.queue import DurableActionQueue
from swipe.sync.scheduler import RequestScheduler

logger = logging.getLogger(__name__)

UNDO_BATCH_SIZE = 20


@dataclass
class PendingMutation:
    """A staged action waiting for confirmation."""

    action: ActionType
    entry: UndoEntry
    removed: RemovedItems
    sender_email: str | None = None
    domain: str | None = None
    state: ActionState = ActionState.CREATED
    intent_ids: list[str] = field(default_factory=list)
    # Emails the provider already accepted during a multi-call dispatch
    sent_ids: set[str] = field(default_factory=set)

    @property
    def email_ids(self) -> list[str]:
        return list(self.entry.affected_email_ids)

    @property
    def unsent_ids(self) -> list[str]:
        return [email_id for email_id in self.email_ids if email_id not in self.sent_ids]


class OptimisticCoordinator:
    """Applies mail actions optimistically and keeps a bounded undo history.

    Example:
        coordinator = OptimisticCoordinator(collection, scheduler, queue, gateway)
        await coordinator.trash_email(item)
        await coordinator.block_sender("promo@shop.example")
        await coordinator.undo_last()  # removes the block filter
    """

    def __init__(
        self,
        collection: MailCollection,
        scheduler: RequestScheduler,
        queue: DurableActionQueue,
        gateway: MailGateway,
        undo_stack: UndoStack | None = None,
        is_online: Callable[[], bool] = lambda: True,
        undo_batch_size: int = UNDO_BATCH_SIZE,
    ) -> None:
        """Initialize the coordinator.

        Args:
            collection: Emails currently shown to the user
            scheduler: Scheduler used for every provider call
            queue: Durable queue for actions that can't be sent now
            gateway: Mail provider gateway
            undo_stack: Undo history (defaults to 10 entries)
            is_online: Connectivity probe
            undo_batch_size: Untrash calls issued together during undo
        """
        self.collection = collection
        self._scheduler = scheduler
        self._queue = queue
        self._gateway = gateway
        self.undo_stack = undo_stack if undo_stack is not None else UndoStack()
        self._is_online = is_online
        self.undo_batch_size = undo_batch_size

        self.blocked_senders: set[str] = set()
        # Undo entry id -> durable intent ids created for it
        self._queued_intents: dict[str, list[str]] = {}

    @property
    def can_undo(self) -> bool:
        return bool(self.undo_stack)

    # --- Phase 1 ---

    def stage(
        self,
        action: ActionType | str,
        items: Iterable[MailItem],
        *,
        sender_email: str | None = None,
        domain: str | None = None,
        kind: UndoKind | None = None,
    ) -> PendingMutation:
        """Apply an action to local state and record how to reverse it.

        Raises:
            ValidationError: The action is missing its target; local state
                is left untouched
        """
        action = ActionType(action)
        items = list(items)

        if action == ActionType.BLOCK and not sender_email:
            raise ValidationError("block requires sender_email")
        if action == ActionType.NUKE and not domain:
            raise ValidationError("nuke requires domain")
        if action in (ActionType.TRASH, ActionType.UNSUBSCRIBE, ActionType.KEEP) and not items:
            raise ValidationError(f"{action.value} requires at least one email")

        email_ids = [item.id for item in items]
        removed = self.collection.remove_ids(email_ids)

        entry = UndoEntry(
            id=str(uuid.uuid4()),
            kind=kind or UndoKind(action.value),
            affected_email_ids=tuple(email_ids),
            created_at=utcnow(),
            removed_items=tuple(removed),
            sender_email=sender_email,
            domain=domain,
        )
        self.undo_stack.push(entry)
        self._prune_queued_intents()

        if action == ActionType.BLOCK:
            self.blocked_senders.add(sender_email.lower())

        return PendingMutation(
            action=action,
            entry=entry,
            removed=removed,
            sender_email=sender_email,
            domain=domain,
        )

    # --- Phase 2 ---

    async def confirm(self, pending: PendingMutation) -> ActionOutcome:
        """Send a staged action to the provider or the durable queue.

        Returns:
            ActionOutcome with state SUCCEEDED or QUEUED_OFFLINE

        Raises:
            SwipeError: Terminal failure of a direct send; local state has
                been reverted before the error propagates
        """
        if pending.action == ActionType.KEEP:
            # Keep never touches the provider
            pending.state = ActionState.SUCCEEDED
            return self._outcome(pending)

        if not self._is_online() and self._queue.available:
            return self._hand_to_queue(pending, reason="offline")

        pending.state = ActionState.EXECUTING
        try:
            filter_id = await self._dispatch(pending)
        except NetworkUnavailable:
            if self._queue.available:
                return self._hand_to_queue(pending, reason="network_unavailable")
            self._revert(pending)
            raise
        except Exception:
            self._revert(pending)
            raise

        pending.state = ActionState.SUCCEEDED
        outcome = self._outcome(pending)
        if filter_id:
            self.undo_stack.attach_handle(pending.entry.id, filter_id)
            outcome.filter_id = filter_id
        return outcome

    async def apply(
        self,
        action: ActionType | str,
        items: Iterable[MailItem],
        *,
        sender_email: str | None = None,
        domain: str | None = None,
        kind: UndoKind | None = None,
    ) -> ActionOutcome:
        """Stage and confirm in one call.

        Local state changes before the first suspension point, so a second
        gesture can never target an email the first one already removed.
        """
        pending = self.stage(action, items, sender_email=sender_email, domain=domain, kind=kind)
        return await self.confirm(pending)

    async def _dispatch(self, pending: PendingMutation) -> str | None:
        """Send the action through the scheduler. Returns a filter id for block/nuke."""
        gateway = self._gateway
        if pending.action == ActionType.TRASH:
            await self._scheduler.execute(partial(gateway.trash, pending.email_ids))
        elif pending.action == ActionType.UNSUBSCRIBE:
            for email_id in pending.email_ids:
                await self._scheduler.execute(partial(gateway.mark_spam, email_id))
                pending.sent_ids.add(email_id)
        elif pending.action == ActionType.BLOCK:
            return await self._scheduler.execute(
                partial(gateway.create_block_filter, sender=pending.sender_email)
            )
        elif pending.action == ActionType.NUKE:
            return await self._scheduler.execute(
                partial(gateway.create_block_filter, domain=pending.domain)
            )
        return None

    def _hand_to_queue(self, pending: PendingMutation, reason: str) -> ActionOutcome:
        if pending.action == ActionType.BLOCK:
            targets: list[dict[str, Any]] = [{"sender_email": pending.sender_email}]
        elif pending.action == ActionType.NUKE:
            targets = [{"domain": pending.domain}]
        else:
            targets = [{"email_id": email_id} for email_id in pending.unsent_ids]

        for target in targets:
            intent_id = self._queue.enqueue(pending.action, reason=reason, **target)
            pending.intent_ids.append(intent_id)

        self._queued_intents[pending.entry.id] = list(pending.intent_ids)
        pending.state = ActionState.QUEUED_OFFLINE
        return self._outcome(pending)

    def _revert(self, pending: PendingMutation) -> None:
        """Consume the undo entry and put back the emails the provider never got."""
        self.undo_stack.discard(pending.entry.id)
        restored = self.collection.restore(
            [(index, item) for index, item in pending.removed if item.id not in pending.sent_ids]
        )
        if pending.action == ActionType.BLOCK and pending.sender_email:
            self.blocked_senders.discard(pending.sender_email.lower())
        pending.state = ActionState.HARD_FAILED
        logger.warning(
            "Action failed, reverted, action=%s, restored=%d",
            pending.action.value, restored,
        )

    @staticmethod
    def _outcome(pending: PendingMutation) -> ActionOutcome:
        return ActionOutcome(
            state=pending.state,
            undo_entry_id=pending.entry.id,
            intent_id=pending.intent_ids[0] if pending.intent_ids else None,
            removed_count=len(pending.removed),
            extra={"intent_ids": list(pending.intent_ids)} if pending.intent_ids else {},
        )

    def _prune_queued_intents(self) -> None:
        for entry_id in list(self._queued_intents):
            if entry_id not in self.undo_stack:
                del self._queued_intents[entry_id]

    # --- Convenience actions ---

    async def trash_email(self, item: MailItem) -> ActionOutcome:
        return await self.apply(ActionType.TRASH, [item])

    async def trash_sender(self, sender_email: str) -> ActionOutcome | None:
        """Trash every visible email from a sender. None if there are none."""
        items = self.collection.by_sender(sender_email)
        if not items:
            return None
        return await self.apply(
            ActionType.TRASH, items, sender_email=sender_email, kind=UndoKind.TRASH_SENDER
        )

    async def trash_senders(self, sender_emails: Iterable[str]) -> ActionOutcome | None:
        """Trash all visible email from several senders as one undoable action."""
        senders = {s.lower() for s in sender_emails}
        items = [item for item in self.collection if item.sender.lower() in senders]
        if not items:
            return None
        return await self.apply(ActionType.TRASH, items, kind=UndoKind.TRASH_SENDER)

    async def block_sender(self, sender_email: str) -> ActionOutcome:
        return await self.apply(
            ActionType.BLOCK, self.collection.by_sender(sender_email), sender_email=sender_email
        )

    async def nuke_domain(self, domain: str) -> ActionOutcome:
        return await self.apply(ActionType.NUKE, self.collection.by_domain(domain), domain=domain)

    async def unsubscribe(self, item: MailItem) -> ActionOutcome:
        return await self.apply(ActionType.UNSUBSCRIBE, [item], sender_email=item.sender)

    async def keep(self, item: MailItem) -> ActionOutcome:
        return await self.apply(ActionType.KEEP, [item])

    # --- Undo ---

    async def undo_last(self) -> bool:
        """Reverse the most recent action.

        A failed undo is not retried: the entry is gone, and the next call
        reverses the next older action.

        Returns:
            True if the action was reversed, False if the stack was empty or
            the compensating call failed

        Raises:
            UndoImpossible: The entry cannot be reversed (block/nuke without
                a filter id, or an unsubscribe already sent)
        """
        entry = self.undo_stack.pop()
        if entry is None:
            return False

        queued = self._queued_intents.pop(entry.id, [])
        if queued and self._cancel_queued(queued):
            # Nothing reached the provider yet
            self._undo_locally(entry)
            log_undo(logger, entry.id, entry.kind.value, True, len(entry.affected_email_ids))
            return True

        if entry.kind in (UndoKind.BLOCK, UndoKind.NUKE):
            return await self._undo_filter(entry)
        if entry.kind == UndoKind.UNSUBSCRIBE:
            log_undo(logger, entry.id, entry.kind.value, False, len(entry.affected_email_ids))
            raise UndoImpossible("Unsubscribe requests can't be recalled")
        if entry.kind == UndoKind.KEEP:
            self.collection.restore(list(entry.removed_items))
            log_undo(logger, entry.id, entry.kind.value, True, len(entry.affected_email_ids))
            return True
        return await self._undo_trash(entry)

    def _cancel_queued(self, intent_ids: list[str]) -> bool:
        """Drop still-pending intents. True if none had been sent yet.

        An intent a running flush is sending right now counts as sent; it is
        left to the flush and reversed like a confirmed action.
        """
        pending = {intent.id for intent in self._queue.list_pending()}
        pending.discard(self._queue.in_flight)
        all_pending = all(intent_id in pending for intent_id in intent_ids)
        for intent_id in intent_ids:
            if intent_id in pending:
                self._queue.remove(intent_id)
        return all_pending

    def _undo_locally(self, entry: UndoEntry) -> None:
        self.collection.restore(list(entry.removed_items))
        if entry.kind == UndoKind.BLOCK and entry.sender_email:
            self.blocked_senders.discard(entry.sender_email.lower())

    async def _undo_filter(self, entry: UndoEntry) -> bool:
        if not entry.server_handle:
            log_undo(logger, entry.id, entry.kind.value, False, len(entry.affected_email_ids))
            raise UndoImpossible(f"No filter id recorded for {entry.kind.value}")

        try:
            deleted = await self._scheduler.execute(
                partial(self._gateway.delete_filter, entry.server_handle)
            )
        except Exception as e:
            logger.error("Undo failed, entry_id=%s, error=%s", entry.id, e)
            deleted = False

        if not deleted:
            log_undo(logger, entry.id, entry.kind.value, False, len(entry.affected_email_ids))
            return False

        if entry.kind == UndoKind.BLOCK and entry.sender_email:
            self.blocked_senders.discard(entry.sender_email.lower())

        # Server state may have moved on; reload rather than re-insert copies
        await self.refresh()
        log_undo(logger, entry.id, entry.kind.value, True, len(entry.affected_email_ids))
        return True

    async def _undo_trash(self, entry: UndoEntry) -> bool:
        ids = list(entry.affected_email_ids)
        for start in range(0, len(ids), self.undo_batch_size):
            batch = ids[start:start + self.undo_batch_size]
            results = await asyncio.gather(
                *(self._scheduler.execute(partial(self._gateway.untrash, email_id)) for email_id in batch),
                return_exceptions=True,
            )
            errors = [r for r in results if isinstance(r, BaseException)]
            if errors:
                logger.error(
                    "Undo failed, entry_id=%s, failed=%d, error=%s",
                    entry.id, len(errors), errors[0],
                )
                log_undo(logger, entry.id, entry.kind.value, False, len(ids))
                return False

        if not await self.refresh():
            # Untrash went through; show the local copies until the next refresh
            self.collection.restore(list(entry.removed_items))
        log_undo(logger, entry.id, entry.kind.value, True, len(ids))
        return True

    async def refresh(self) -> bool:
        """Reload the collection from the provider.

        Returns:
            False if the provider could not be read; the collection is
            left as it was
        """
        try:
            items = await self._scheduler.execute(self._gateway.list_emails)
        except Exception as e:
            logger.warning("Refresh failed: %s", e)
            return False
        self.collection.replace_all(items)
        return True

    def reset(self) -> None:
        """Forget undo history. Used on logout."""
        self.undo_stack.clear()
        self._queued_intents.clear()
        self.blocked_senders.clear()
