"""Error taxonomy for provider calls, queue replay and undo.

Every error raised by the action layer derives from SwipeError and carries
whether it is worth retrying plus a short message fit for a notification.
classify_error() turns arbitrary exceptions (including ones raised by a
third-party gateway) into an AppError for display.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SwipeError(Exception):
    """Base class for all action-layer errors."""

    retryable = False
    user_message = "Something went wrong."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.user_message)


class RateLimited(SwipeError):
    """The provider is throttling us (HTTP 429)."""

    retryable = True
    user_message = "Too many requests. Please wait a moment."

    def __init__(self, message: str | None = None, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class NetworkUnavailable(SwipeError):
    """The provider could not be reached at all."""

    retryable = True
    user_message = "Network error. Check your connection."


class ValidationError(SwipeError):
    """The request was rejected as malformed or not allowed."""

    user_message = "Invalid request."


class SessionExpired(SwipeError):
    """The provider session is no longer valid (HTTP 401)."""

    user_message = "Session expired. Please sign in again."


class ProviderHardFailure(SwipeError):
    """The provider kept failing (5xx) after the gateway's own retries."""

    retryable = True
    user_message = "Mail provider is temporarily unavailable. Try again later."


class Exhausted(SwipeError):
    """The retry budget for a request or intent is spent."""

    user_message = "Action failed after several retries."


class UndoImpossible(SwipeError):
    """An undo entry cannot be reversed (no server handle, or irreversible action)."""

    user_message = "This action can't be undone."


class RequestCancelled(SwipeError):
    """A scheduled request was dropped by RequestScheduler.clear()."""

    user_message = "Request cancelled."


class QueueUnavailable(SwipeError):
    """The durable queue has no backing store."""

    user_message = "Offline storage is unavailable."


class StoreUnavailable(SwipeError):
    """The persistent store could not be opened."""

    user_message = "Offline storage is unavailable."


class ErrorType(str, Enum):
    """Display classification of an error."""

    NETWORK = "network"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    PROVIDER = "provider"
    VALIDATION = "validation"
    EXHAUSTED = "exhausted"
    UNDO = "undo"
    UNKNOWN = "unknown"


@dataclass
class AppError:
    """Normalized error for user notification."""

    type: ErrorType
    message: str
    retryable: bool
    retry_after: float | None = None
    original: BaseException | None = None


_TYPE_BY_CLASS: list[tuple[type[SwipeError], ErrorType]] = [
    (RateLimited, ErrorType.RATE_LIMIT),
    (NetworkUnavailable, ErrorType.NETWORK),
    (SessionExpired, ErrorType.AUTH),
    (ValidationError, ErrorType.VALIDATION),
    (ProviderHardFailure, ErrorType.PROVIDER),
    (Exhausted, ErrorType.EXHAUSTED),
    (UndoImpossible, ErrorType.UNDO),
]


def _status_of(error: BaseException) -> int | None:
    """Pull an HTTP-ish status code off foreign exceptions."""
    for attr in ("status", "status_code", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_rate_limit_error(error: BaseException) -> bool:
    """Return True if the error signals provider rate limiting.

    Recognizes RateLimited itself, any exception exposing a 429 status,
    and messages mentioning 429 / rate limit / Too Many Requests. Other
    SwipeErrors are already classified and never match on their message.
    """
    if isinstance(error, RateLimited):
        return True
    if isinstance(error, SwipeError):
        return False
    if _status_of(error) == 429:
        return True
    message = str(error)
    return (
        "429" in message
        or "rate limit" in message.lower()
        or "Too Many Requests" in message
    )


def classify_error(error: BaseException) -> AppError:
    """Classify an exception into an AppError for display.

    Args:
        error: Any exception raised by an action or undo

    Returns:
        AppError with type, message and retry hints
    """
    if isinstance(error, SwipeError):
        error_type = ErrorType.UNKNOWN
        for cls, mapped in _TYPE_BY_CLASS:
            if isinstance(error, cls):
                error_type = mapped
                break
        return AppError(
            type=error_type,
            message=str(error),
            retryable=error.retryable,
            retry_after=getattr(error, "retry_after", None),
            original=error,
        )

    if isinstance(error, (ConnectionError, TimeoutError)):
        return AppError(ErrorType.NETWORK, NetworkUnavailable.user_message, True, original=error)

    status = _status_of(error)
    if status == 401:
        return AppError(ErrorType.AUTH, SessionExpired.user_message, False, original=error)
    if is_rate_limit_error(error):
        return AppError(ErrorType.RATE_LIMIT, RateLimited.user_message, True, 60.0, error)
    if status == 400:
        return AppError(ErrorType.VALIDATION, str(error) or ValidationError.user_message, False, original=error)
    if status is not None and 500 <= status < 600:
        return AppError(ErrorType.PROVIDER, ProviderHardFailure.user_message, True, 30.0, error)

    return AppError(ErrorType.UNKNOWN, str(error) or SwipeError.user_message, False, original=error)


def notification_level(error: AppError) -> str:
    """Pick a notification level: 'warning' for transient errors, else 'error'."""
    if error.type == ErrorType.RATE_LIMIT or error.retryable:
        return "warning"
    return "error"
