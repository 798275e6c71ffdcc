"""Centralized logging configuration for Relay CMS.

All modules log through children of the ``relaycms`` logger so the level
and handlers can be configured in one place. Session ids and CSRF tokens
are long hex strings; ``SecretFilter`` masks them before any handler
writes a record.
"""

import logging
import re
import sys
from pathlib import Path
from typing import Optional


# Create the main logger for the application
logger = logging.getLogger("relaycms")

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Session ids and CSRF tokens are 64 hex characters
SECRET_PATTERN = re.compile(r"\b[0-9a-fA-F]{32,}\b")
REDACTED = "[redacted]"


class SecretFilter(logging.Filter):
    """Mask session ids and CSRF tokens in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = SECRET_PATTERN.sub(REDACTED, message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    log_format: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """Configure logging for the application.

    Console output goes to stderr so ``relaycms`` commands can print
    results on stdout.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to log file, usually ``data/relay.log``.
        log_format: Format string for log messages.

    Returns:
        Configured logger instance.
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    formatter = logging.Formatter(log_format)
    secrets = SecretFilter()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(secrets)
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(secrets)
        logger.addHandler(file_handler)

    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger for a Relay component.

    Args:
        name: Component name, e.g. ``"menus"`` for ``relaycms.menus``.

    Returns:
        Child logger instance.
    """
    return logging.getLogger(f"relaycms.{name}")


# Pre-configured loggers for common modules
auth_logger = get_logger("auth")
storage_logger = get_logger("storage")
content_logger = get_logger("content")
theme_logger = get_logger("themes")
admin_logger = get_logger("admin")
