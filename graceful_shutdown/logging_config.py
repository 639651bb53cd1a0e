"""Structured logging configuration with peer address support.

Shutdown events carry their details as `extra` fields (connection_id,
signal, path, duration_ms, exit_code). The JSON formatter emits them as
keys; the text formatter appends them as key=value pairs.
"""

import logging
import sys
from contextvars import ContextVar
from typing import Optional

from pythonjsonlogger.json import JsonFormatter as BaseJsonFormatter

# Remote address of the connection whose protocol callback is running
peer: ContextVar[str] = ContextVar("peer", default="-")


class PeerFilter(logging.Filter):
    """Logging filter that adds the current peer address to all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add peer attribute to the log record."""
        record.peer = peer.get()
        return True


class CustomJsonFormatter(BaseJsonFormatter):
    """Custom JSON formatter with consistent field naming."""

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict,
    ) -> None:
        """Add custom fields to the JSON log record."""
        super().add_fields(log_record, record, message_dict)

        # Rename fields for consistency with log aggregators
        if "asctime" in log_record:
            log_record["timestamp"] = log_record.pop("asctime")
        if "levelname" in log_record:
            log_record["level"] = log_record.pop("levelname")

        if "peer" not in log_record:
            log_record["peer"] = peer.get()


# Attributes every LogRecord has; anything else came in through `extra`
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "peer", "taskName"}


class KeyValueFormatter(logging.Formatter):
    """Human-readable formatter that appends extra fields as key=value."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = " ".join(
            f"{key}={value}"
            for key, value in sorted(vars(record).items())
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        )
        if not extras:
            return line
        # Keep a traceback below the key=value pairs
        first, sep, rest = line.partition("\n")
        return f"{first} {extras}{sep}{rest}"


def setup_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    logger_name: Optional[str] = None,
) -> None:
    """
    Configure structured logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, output JSON; if False, output human-readable format
        logger_name: If provided, configure only this logger; otherwise configure root
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(log_level.upper())

    # Clear existing handlers to avoid duplicates
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level.upper())

    if json_format:
        formatter = CustomJsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(peer)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S.%fZ",
        )
    else:
        formatter = KeyValueFormatter(
            fmt="%(asctime)s [%(levelname)s] [%(peer)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    handler.addFilter(PeerFilter())
    logger.addHandler(handler)

    # Prevent propagation to root logger if configuring a specific logger
    if logger_name:
        logger.propagate = False

