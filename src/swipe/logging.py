"""Structured JSON logging for the Swipe agent.

Provides audit-friendly logging with contextual fields for queued actions,
sync passes, rate-limit backoff and undo. Message bodies and subjects are
never logged, only ids.

Usage:
    import logging

    from swipe.logging import setup_logging

    setup_logging("INFO")
    log = logging.getLogger("swipe.sync")
    log.info("action_queued", extra={"intent_id": "abc", "action": "trash"})
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pythonjsonlogger import jsonlogger

from swipe import __version__

_client_id: str | None = None


class SwipeJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds agent context to all log records."""

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict,
    ) -> None:
        """Add standard fields to every log record."""
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name

        log_record["agent_version"] = __version__
        if _client_id:
            log_record["client_id"] = _client_id

        if "message" not in log_record and record.getMessage():
            log_record["message"] = record.getMessage()

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        """Format time as ISO 8601."""
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return dt.isoformat()


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    client_id: str | None = None,
    max_bytes: int = 10_000_000,  # 10MB
    backup_count: int = 5,
) -> None:
    """Configure root logger with JSON formatting.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path for rotating file handler
        client_id: Identifier of this client install, added to every record
        max_bytes: Max size per log file for rotation
        backup_count: Number of backup files to keep
    """
    global _client_id
    if client_id:
        _client_id = client_id

    formatter = SwipeJsonFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # JSON to stderr so stdout stays clean for CLI output
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


# --- Audit Event Functions ---


def log_action_queued(
    logger: logging.Logger,
    intent_id: str,
    action: str,
    reason: str,
) -> None:
    """Log an action handed to the durable queue.

    Args:
        logger: Logger instance
        intent_id: Durable queue id of the intent
        action: Action type (trash, block, ...)
        reason: Why it was queued (offline, network_unavailable)
    """
    logger.info(
        "Action queued",
        extra={
            "event": "action_queued",
            "intent_id": intent_id,
            "action": action,
            "reason": reason,
        },
    )


def log_action_synced(logger: logging.Logger, intent_id: str, action: str) -> None:
    """Log a queued intent that reached the provider."""
    logger.debug(
        "Action synced",
        extra={"event": "action_synced", "intent_id": intent_id, "action": action},
    )


def log_action_evicted(
    logger: logging.Logger,
    intent_id: str,
    action: str,
    retry_count: int,
) -> None:
    """Log an intent removed after exhausting its retry budget.

    Args:
        logger: Logger instance
        intent_id: Durable queue id of the intent
        action: Action type
        retry_count: Attempts already spent
    """
    logger.warning(
        "Action evicted",
        extra={
            "event": "action_evicted",
            "intent_id": intent_id,
            "action": action,
            "retry_count": retry_count,
        },
    )


def log_rate_limited(
    logger: logging.Logger,
    delay: float,
    attempt: int,
    max_retries: int,
) -> None:
    """Log a rate-limited request that will be retried."""
    logger.warning(
        "Rate limited, backing off",
        extra={
            "event": "rate_limited",
            "delay_seconds": delay,
            "attempt": attempt,
            "max_retries": max_retries,
        },
    )


def log_sync_complete(logger: logging.Logger, synced: int, failed: int, retried: int) -> None:
    """Log the outcome of one flush pass."""
    logger.info(
        "Sync complete",
        extra={
            "event": "sync_complete",
            "synced": synced,
            "failed": failed,
            "retried": retried,
        },
    )


def log_undo(
    logger: logging.Logger,
    entry_id: str,
    action: str,
    success: bool,
    email_count: int,
) -> None:
    """Log an undo attempt.

    Args:
        logger: Logger instance
        entry_id: Undo entry id
        action: Undo entry kind (trash, block, nuke, ...)
        success: Whether the compensating call(s) succeeded
        email_count: Number of emails covered by the entry
    """
    logger.info(
        "Undo finished" if success else "Undo failed",
        extra={
            "event": "undo",
            "entry_id": entry_id,
            "action": action,
            "success": success,
            "email_count": email_count,
        },
    )
