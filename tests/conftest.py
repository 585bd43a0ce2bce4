"""Shared fixtures: a scriptable in-memory mail gateway and a fake clock."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Sequence

import pytest

from swipe.models import MailItem
from swipe.sync import DurableActionQueue, MemoryActionStore, RequestScheduler


class FakeClock:
    """Monotonic clock that only moves when sleep() is awaited."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


class FakeGateway:
    """In-memory MailGateway recording every call in order.

    Failures are scripted per method (and optionally per target) with
    fail(); each scripted error is raised once, oldest first.
    """

    def __init__(self, inbox: Sequence[MailItem] = ()) -> None:
        self.inbox: list[MailItem] = list(inbox)
        self.trashed: dict[str, MailItem] = {}
        self.filters: dict[str, dict[str, str | None]] = {}
        self.calls: list[tuple] = []
        self.reachable = True
        self.hold: asyncio.Event | None = None
        self.delete_filter_result = True
        self._failures: dict[tuple[str, str | None], list[Exception]] = defaultdict(list)
        self._next_filter = 0

    def fail(self, method: str, error: Exception, times: int = 1, target: str | None = None) -> None:
        self._failures[(method, target)].extend([error] * times)

    def calls_to(self, method: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == method]

    async def _enter(self, method: str, target: str | None) -> None:
        self.calls.append((method, target))
        if self.hold is not None:
            await self.hold.wait()
        await asyncio.sleep(0)
        for key in ((method, target), (method, None)):
            if self._failures.get(key):
                raise self._failures[key].pop(0)

    async def trash(self, ids: Sequence[str]) -> None:
        await self._enter("trash", ",".join(ids))
        for item in [i for i in self.inbox if i.id in ids]:
            self.inbox.remove(item)
            self.trashed[item.id] = item

    async def untrash(self, email_id: str) -> bool:
        await self._enter("untrash", email_id)
        item = self.trashed.pop(email_id, None)
        if item is not None:
            self.inbox.append(item)
        return True

    async def mark_spam(self, email_id: str) -> None:
        await self._enter("mark_spam", email_id)

    async def create_block_filter(self, sender: str | None = None, domain: str | None = None) -> str:
        await self._enter("create_block_filter", sender or domain)
        self._next_filter += 1
        filter_id = f"filter-{self._next_filter}"
        self.filters[filter_id] = {"sender": sender, "domain": domain}
        return filter_id

    async def delete_filter(self, filter_id: str) -> bool:
        await self._enter("delete_filter", filter_id)
        self.filters.pop(filter_id, None)
        return self.delete_filter_result

    async def list_emails(self) -> list[MailItem]:
        await self._enter("list_emails", None)
        return list(self.inbox)

    async def check_server(self) -> bool:
        return self.reachable


def make_items() -> list[MailItem]:
    return [
        MailItem(id="e1", sender="deals@news.example", subject="Weekly deals"),
        MailItem(id="e2", sender="deals@news.example", subject="Flash sale"),
        MailItem(id="e3", sender="promo@shop.example", subject="New arrivals"),
        MailItem(id="e4", sender="orders@shop.example", subject="Your receipt"),
    ]


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks run up to their next blocking point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway(make_items())


@pytest.fixture
def scheduler(clock: FakeClock) -> RequestScheduler:
    return RequestScheduler(
        min_interval=0.1,
        max_retries=3,
        base_delay=1.0,
        backoff_multiplier=2.0,
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def queue(scheduler: RequestScheduler, gateway: FakeGateway) -> DurableActionQueue:
    action_queue = DurableActionQueue(MemoryActionStore(), scheduler, gateway, max_retries=3)
    action_queue.init()
    return action_queue
