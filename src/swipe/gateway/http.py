"""Async HTTP gateway to the Swipe backend's Gmail routes."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Sequence

import httpx

from swipe import __version__
from swipe.errors import (
    NetworkUnavailable,
    ProviderHardFailure,
    RateLimited,
    SessionExpired,
    ValidationError,
)
from swipe.models import MailItem

logger = logging.getLogger(__name__)


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class HttpMailGateway:
    """MailGateway backed by the Swipe web backend (/api/gmail/*).

    Uses httpx.AsyncClient for connection pooling. Server errors (5xx) are
    retried here with exponential backoff; 429 is raised straight away as
    RateLimited because backoff for throttling belongs to the
    RequestScheduler. Other 4xx responses are never retried.
    """

    def __init__(
        self,
        server_url: str,
        max_retries: int = 3,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the gateway.

        Args:
            server_url: Base URL of the Swipe backend (e.g., http://localhost:3000)
            max_retries: Attempts per call on 5xx responses
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests pass httpx.MockTransport)
            sleep: Async sleep used between 5xx retries
        """
        self.server_url = server_url.rstrip("/")
        self.max_retries = max(1, max_retries)
        self.timeout = timeout
        self._sleep = sleep

        self._client = httpx.AsyncClient(
            base_url=self.server_url,
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": f"swipe-agent/{__version__}"},
            transport=transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        """Send one request, retrying 5xx, and return the decoded JSON body.

        Raises:
            RateLimited: 429 from the backend
            SessionExpired: 401
            ValidationError: Any other 4xx
            ProviderHardFailure: 5xx on every attempt
            NetworkUnavailable: Connection error or timeout
        """
        attempt = 0
        last_error: str | None = None

        while attempt < self.max_retries:
            attempt += 1

            try:
                response = await self._client.request(method, path, json=payload)
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                raise NetworkUnavailable(f"Cannot reach {self.server_url}: {e}") from e
            except httpx.HTTPError as e:
                raise NetworkUnavailable(f"HTTP error: {e}") from e

            if response.status_code < 400:
                try:
                    return response.json()
                except json.JSONDecodeError:
                    return {}

            if response.status_code == 429:
                raise RateLimited(
                    f"Too Many Requests: {method} {path}",
                    retry_after=_retry_after(response),
                )

            if response.status_code == 401:
                raise SessionExpired()

            if 400 <= response.status_code < 500:
                raise ValidationError(
                    f"Client error: {response.status_code} - {response.text}"
                )

            # 5xx - retry with backoff
            last_error = f"Server error: {response.status_code}"
            logger.warning(
                "Provider error, method=%s, path=%s, status=%d, attempt=%d",
                method, path, response.status_code, attempt,
            )
            if attempt < self.max_retries:
                await self._sleep(2**attempt)

        raise ProviderHardFailure(last_error or "Max retries exceeded")

    async def trash(self, ids: Sequence[str]) -> None:
        if not ids:
            raise ValidationError("No IDs provided")
        await self._request("POST", "/api/gmail/trash", {"ids": list(ids)})

    async def untrash(self, email_id: str) -> bool:
        data = await self._request(
            "POST", "/api/gmail/emails", {"action": "untrash", "emailId": email_id}
        )
        return bool(data.get("success", True))

    async def mark_spam(self, email_id: str) -> None:
        await self._request(
            "POST", "/api/gmail/emails", {"action": "spam", "emailId": email_id}
        )

    async def create_block_filter(
        self,
        sender: str | None = None,
        domain: str | None = None,
    ) -> str:
        """Create a filter trashing all mail from a sender or a whole domain.

        Returns:
            The provider's filter id, needed to undo the block later
        """
        if bool(sender) == bool(domain):
            raise ValidationError("Exactly one of sender or domain is required")

        if sender:
            data = await self._request("POST", "/api/gmail/block", {"senderEmail": sender})
        else:
            data = await self._request(
                "POST", "/api/gmail/nuke", {"domain": domain, "confirm": True}
            )

        filter_id = data.get("filterId")
        if not data.get("success") or not filter_id:
            raise ProviderHardFailure(data.get("error") or "Failed to create block filter")
        return str(filter_id)

    async def delete_filter(self, filter_id: str) -> bool:
        data = await self._request(
            "POST", "/api/gmail/undo", {"type": "block", "filterId": filter_id}
        )
        return bool(data.get("success"))

    async def list_emails(self) -> list[MailItem]:
        data = await self._request("GET", "/api/gmail/emails")
        rows = data.get("emails", []) if isinstance(data, dict) else data
        return [MailItem.from_dict(row) for row in rows]

    async def check_server(self) -> bool:
        """Check if the backend is reachable.

        Returns:
            True if the health endpoint answers 200, False otherwise
        """
        try:
            response = await self._client.get("/api/health", timeout=httpx.Timeout(5.0))
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        await self._client.aclose()

    async def __aenter__(self) -> "HttpMailGateway":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()
