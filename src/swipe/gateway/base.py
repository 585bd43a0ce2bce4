"""Mail provider gateway contract."""

from __future__ import annotations

from typing import Protocol, Sequence

from swipe.models import MailItem


class MailGateway(Protocol):
    """Opaque mail-provider operations used by the action layer.

    Every mutating call must be idempotent on the provider side (trashing
    a trashed message, creating an identical filter, deleting a deleted
    filter). Queue replay is at-least-once and relies on it.

    Implementations raise swipe.errors.RateLimited (or any exception the
    scheduler recognizes as a 429) when throttled, and another SwipeError
    for everything else.
    """

    async def trash(self, ids: Sequence[str]) -> None: ...

    async def untrash(self, email_id: str) -> bool: ...

    async def create_block_filter(
        self,
        sender: str | None = None,
        domain: str | None = None,
    ) -> str: ...

    async def delete_filter(self, filter_id: str) -> bool: ...

    async def mark_spam(self, email_id: str) -> None: ...

    async def list_emails(self) -> list[MailItem]: ...
