"""Optimistic actions, visible collection and undo history."""

from swipe.actions.collection import MailCollection
from swipe.actions.coordinator import OptimisticCoordinator, PendingMutation
from swipe.actions.undo import UndoStack

__all__ = ["MailCollection", "OptimisticCoordinator", "PendingMutation", "UndoStack"]
