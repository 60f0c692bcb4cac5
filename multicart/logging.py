"""
Logging for the multicart package.

All modules log through `get_logger(__name__)`, which places them under the
"multicart" logger. A stdout handler is attached to that logger on import
unless the host application has already set up logging.

Environment:
    LOG_LEVEL: level name for the package logger (default INFO)
    MULTICART_LOG_COMPACT: "1" drops timestamps from the format
"""

import logging
import os
import sys
from functools import cache

PACKAGE_LOGGER = "multicart"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FORMAT_COMPACT = "%(levelname)s - %(name)s - %(message)s"

ID_LOG_LENGTH = 8


def _level_from_env() -> int:
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def _setup_package_logger() -> None:
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if package_logger.handlers or logging.getLogger().handlers:
        return

    level = _level_from_env()
    compact = os.environ.get("MULTICART_LOG_COMPACT") == "1"

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT_COMPACT if compact else LOG_FORMAT))

    package_logger.setLevel(level)
    package_logger.addHandler(handler)


_setup_package_logger()


@cache
def get_logger(name: str) -> logging.Logger:
    """Logger for a multicart module (pass __name__)."""
    return logging.getLogger(name)


def _escape_control_chars(value: str) -> str:
    # Store, profile and cart ids come from the host; keep log lines single-line
    return (
        value.replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
        .replace("\x00", "")
    )


def sanitize_id_for_logging(id_value: str | None) -> str:
    """Escaped identifier prefix (first 8 chars), or "N/A" when empty."""
    if not id_value:
        return "N/A"
    return _escape_control_chars(str(id_value))[:ID_LOG_LENGTH]


def sanitize_string_for_logging(value: str | None, max_length: int = 50) -> str:
    """
    Escaped free text such as validation reasons, cut at `max_length`.

    Truncated values end with "..."; empty values become "N/A".
    """
    if not value:
        return "N/A"
    safe_value = _escape_control_chars(str(value))
    if len(safe_value) <= max_length:
        return safe_value
    return safe_value[:max_length] + "..."
