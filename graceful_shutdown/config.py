"""Shutdown configuration using Pydantic Settings."""

import re
import signal
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_SEPARATORS = re.compile(r"[\s,]+")


class ShutdownSettings(BaseSettings):
    """Graceful shutdown settings loaded from environment variables.

    Every field can be set with a ``GRACEFUL_SHUTDOWN_`` prefixed variable,
    e.g. ``GRACEFUL_SHUTDOWN_TIMEOUT=5000``.
    """

    model_config = SettingsConfigDict(
        env_prefix="GRACEFUL_SHUTDOWN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Termination triggers, separated by spaces or commas
    signals: str = "SIGINT SIGTERM"

    # Forced shutdown grace period in milliseconds
    timeout: int = Field(default=30000, ge=0)

    # Skip draining entirely and finalize on the first trigger
    development: bool = False

    # Always 1, even after a clean drain
    exit_code: int = 1

    # Logging
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_json: bool = True  # JSON format for production, False for human-readable

    @field_validator("signals")
    @classmethod
    def _check_signals(cls, value: str) -> str:
        for name in split_signal_names(value):
            if name not in signal.Signals.__members__:
                raise ValueError(f"unknown signal: {name}")
        return value

    @property
    def signal_names(self) -> list[str]:
        """Configured signal names in declaration order."""
        return split_signal_names(self.signals)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout / 1000.0


def split_signal_names(value: str) -> list[str]:
    """Split ``"SIGINT SIGTERM"`` style strings into upper-cased names."""
    return [part.upper() for part in _SEPARATORS.split(value) if part]


@lru_cache
def get_settings() -> ShutdownSettings:
    """Get cached settings instance."""
    return ShutdownSettings()
