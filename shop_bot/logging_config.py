"""
Logging configuration for the shop bot application.

Usage:
    from shop_bot.logging_config import setup_logging
    setup_logging()  # Call once at application startup

The level comes from config.LOG_LEVEL (LOG_LEVEL env var, default INFO).
Every handler on the root logger gets a PhoneMaskingFilter, so a customer
number that ends up in a log message is written with its last 4 digits only.
"""
import logging
import re
import sys
from typing import Optional

from . import config

VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# 9+ digits, optionally prefixed with + and grouped with spaces.
# Hyphenated tokens such as ORD-1234-5678 are left alone.
PHONE_PATTERN = re.compile(r"(?<![\w-])\+?\d[\d ]{7,}\d(?![\w-])")


def mask_phone(phone: Optional[str]) -> str:
    """Mask a customer phone number for logs, keeping the last 4 digits."""
    if not phone:
        return "<none>"
    digits = "".join(ch for ch in phone if ch.isdigit())
    if len(digits) <= 4:
        return "****"
    return "*" * (len(digits) - 4) + digits[-4:]


class PhoneMaskingFilter(logging.Filter):
    """Rewrite phone-looking numbers in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = PHONE_PATTERN.sub(lambda match: mask_phone(match.group(0)), message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to config.LOG_LEVEL; unknown names fall back to INFO.
    """
    level = (level or config.LOG_LEVEL).upper()
    if level not in VALID_LEVELS:
        level = "INFO"

    numeric_level = getattr(logging, level)

    # Configure root logger
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, PhoneMaskingFilter) for f in handler.filters):
            handler.addFilter(PhoneMaskingFilter())

    logging.getLogger("shop_bot").setLevel(numeric_level)

    # Third-party loggers inherit the root level only when debugging
    third_party_level = logging.NOTSET if level == "DEBUG" else logging.WARNING
    for name in config.QUIET_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)

    logger = logging.getLogger(__name__)
    logger.debug("Logging configured at %s level", level)
