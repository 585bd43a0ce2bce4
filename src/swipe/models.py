"""Core data types shared by the scheduler, queue and coordinator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ActionType(str, Enum):
    """User-triggered mutating actions."""

    TRASH = "trash"
    UNSUBSCRIBE = "unsubscribe"
    BLOCK = "block"
    NUKE = "nuke"
    KEEP = "keep"


class UndoKind(str, Enum):
    """What an undo entry reverses."""

    TRASH = "trash"
    TRASH_SENDER = "trash_sender"
    UNSUBSCRIBE = "unsubscribe"
    BLOCK = "block"
    NUKE = "nuke"
    KEEP = "keep"


class ActionState(str, Enum):
    """Lifecycle of one action.

    RATE_LIMITED retries and EVICTED live inside the scheduler and queue;
    callers of the coordinator only ever see the states below EXECUTING.
    """

    CREATED = "created"
    EXECUTING = "executing"
    RATE_LIMITED = "rate_limited"
    SUCCEEDED = "succeeded"
    HARD_FAILED = "hard_failed"
    QUEUED_OFFLINE = "queued_offline"
    EVICTED = "evicted"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MailItem:
    """One email as shown in the swipe deck."""

    id: str
    sender: str
    sender_domain: str = ""
    subject: str = ""
    snippet: str = ""
    received_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.sender_domain and "@" in self.sender:
            object.__setattr__(self, "sender_domain", self.sender.rsplit("@", 1)[1].lower())

    def from_sender(self, sender: str) -> bool:
        return self.sender.lower() == sender.lower()

    def from_domain(self, domain: str) -> bool:
        return self.sender_domain.lower() == domain.lower()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MailItem":
        """Build from the backend's JSON email shape (camelCase keys)."""
        received = data.get("receivedAt") or data.get("received_at")
        return cls(
            id=str(data["id"]),
            sender=data.get("sender", ""),
            sender_domain=data.get("senderDomain") or data.get("sender_domain") or "",
            subject=data.get("subject", ""),
            snippet=data.get("snippet", ""),
            received_at=(
                datetime.fromisoformat(received.replace("Z", "+00:00"))
                if isinstance(received, str)
                else None
            ),
        )


@dataclass
class ActionIntent:
    """A mutating action waiting in the durable queue.

    Exactly one of email_id, sender_email or domain identifies the target,
    depending on the action type.
    """

    id: str
    type: ActionType
    created_at: datetime
    retry_count: int = 0
    email_id: str | None = None
    sender_email: str | None = None
    domain: str | None = None

    @property
    def target(self) -> str | None:
        return self.email_id or self.sender_email or self.domain

    def to_record(self) -> dict[str, Any]:
        """Serialize for the persistent store."""
        return {
            "id": self.id,
            "type": self.type.value,
            "email_id": self.email_id,
            "sender_email": self.sender_email,
            "domain": self.domain,
            "created_at": self.created_at.isoformat(),
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "ActionIntent":
        return cls(
            id=record["id"],
            type=ActionType(record["type"]),
            email_id=record.get("email_id"),
            sender_email=record.get("sender_email"),
            domain=record.get("domain"),
            created_at=datetime.fromisoformat(record["created_at"]),
            retry_count=int(record.get("retry_count", 0)),
        )


@dataclass(frozen=True)
class UndoEntry:
    """Compensating record pushed alongside every optimistic mutation.

    removed_items holds the local copies taken out of the collection, paired
    with the index each one occupied; server_handle is the filter id a
    block/nuke produced once the provider confirmed it.
    """

    id: str
    kind: UndoKind
    affected_email_ids: tuple[str, ...]
    created_at: datetime
    removed_items: tuple[tuple[int, MailItem], ...] = ()
    server_handle: str | None = None
    sender_email: str | None = None
    domain: str | None = None


@dataclass
class FlushResult:
    """Outcome of one durable-queue flush pass."""

    synced: int = 0
    failed: int = 0
    retried: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"synced": self.synced, "failed": self.failed, "retried": self.retried}


@dataclass
class ActionOutcome:
    """What happened to one optimistic action."""

    state: ActionState
    undo_entry_id: str
    intent_id: str | None = None
    filter_id: str | None = None
    removed_count: int = 0
    extra: dict[str, Any] = field(default_factory=dict)
