"""Swipe agent configuration settings using pydantic-settings."""

from functools import cached_property
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration settings for the Swipe action agent.

    Settings are loaded from environment variables with the SWIPE_ prefix.
    For example, SWIPE_MIN_INTERVAL_MS=250 sets min_interval_ms to 250.
    """

    model_config = SettingsConfigDict(
        env_prefix="SWIPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Backend settings
    server_url: str = "http://localhost:3000"
    request_timeout: float = 30.0  # seconds
    provider_max_retries: int = 3  # 5xx retries inside the HTTP gateway

    # Request scheduler
    min_interval_ms: int = 100  # minimum spacing between provider calls
    rate_limit_max_retries: int = 3
    base_delay_ms: int = 1000  # first backoff after a 429
    backoff_multiplier: float = 2.0

    # Durable queue
    queue_max_retries: int = 3  # flush attempts before an intent is evicted

    # Undo
    undo_capacity: int = 10
    undo_batch_size: int = 20

    # File paths
    data_dir: Path = Path("~/.local/share/swipe")

    # Logging
    log_level: str = "INFO"
    log_file: Path | None = None

    @field_validator("min_interval_ms", "base_delay_ms")
    @classmethod
    def validate_non_negative_ms(cls, v: int) -> int:
        """Ensure millisecond timings are not negative."""
        if v < 0:
            raise ValueError("timings must be >= 0 milliseconds")
        return v

    @field_validator("rate_limit_max_retries", "queue_max_retries", "provider_max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        """Ensure retry budgets are not negative."""
        if v < 0:
            raise ValueError("retry budgets must be >= 0")
        return v

    @field_validator("backoff_multiplier")
    @classmethod
    def validate_backoff_multiplier(cls, v: float) -> float:
        """Ensure backoff never shrinks between attempts."""
        if v < 1:
            raise ValueError("backoff_multiplier must be at least 1")
        return v

    @field_validator("undo_capacity", "undo_batch_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Ensure undo sizing is positive."""
        if v < 1:
            raise ValueError("undo sizes must be at least 1")
        return v

    @field_validator("request_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("request_timeout must be positive")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @cached_property
    def data_path(self) -> Path:
        """Return expanded data directory path."""
        return self.data_dir.expanduser()

    @cached_property
    def queue_db_path(self) -> Path:
        """Return the SQLite file backing the durable action queue."""
        return self.data_path / "action_queue.db"

    @property
    def min_interval(self) -> float:
        """Minimum scheduler spacing in seconds."""
        return self.min_interval_ms / 1000

    @property
    def base_delay(self) -> float:
        """First rate-limit backoff in seconds."""
        return self.base_delay_ms / 1000
