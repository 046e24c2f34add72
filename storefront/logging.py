"""
Centralized logging configuration for the storefront.

Usage:
    from storefront.logging import get_logger
    logger = get_logger(__name__)

    logger.info(f"Order {order_ref(order.id)} completed")
    logger.error("Provisioning failed", exc_info=True)
"""

import logging
import os
import sys
from functools import cache

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FORMAT_SIMPLE = "%(levelname)s - %(name)s - %(message)s"

# Third-party loggers that flood INFO with per-request lines
_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "hpack",
    "aiogram.event",
    "postgrest",
)


def _get_log_level() -> int:
    """Resolve LOG_LEVEL from environment (default INFO)."""
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def _configure_root_logger() -> None:
    """Attach a single stdout handler to the root logger."""
    root = logging.getLogger()
    if root.handlers:
        return

    level = _get_log_level()
    root.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    # Serverless log collectors already prefix timestamps
    is_production = os.environ.get("VERCEL") == "1"
    handler.setFormatter(logging.Formatter(LOG_FORMAT_SIMPLE if is_production else LOG_FORMAT))
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


_configure_root_logger()


@cache
def get_logger(name: str) -> logging.Logger:
    """
    Get or create a logger with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def _escape_log_injection(value: str) -> str:
    """Neutralize control characters that could forge log lines (CWE-117)."""
    return (
        value.replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
        .replace("\x00", "")
    )


def sanitize_id_for_logging(id_value: str | None) -> str:
    """
    Sanitize an identifier for logging: escaped and truncated to 8 chars.

    Args:
        id_value: Identifier (order id, user id, coupon id), may be None

    Returns:
        Safe short form or "N/A"
    """
    if not id_value:
        return "N/A"
    safe_value = _escape_log_injection(str(id_value))
    return safe_value[:8]


def sanitize_string_for_logging(value: str | None, max_length: int = 50) -> str:
    """
    Sanitize user-controlled text (transaction ids, coupon codes, reasons) for logging.

    Args:
        value: Text to sanitize, may be None
        max_length: Maximum length to keep

    Returns:
        Escaped, truncated text or "N/A"
    """
    if not value:
        return "N/A"
    safe_value = _escape_log_injection(str(value))
    if len(safe_value) <= max_length:
        return safe_value
    return safe_value[:max_length] + "..."


def order_ref(order_id: str | None, order_number: str | None = None) -> str:
    """Short human reference for an order in log lines (BD-000042/1a2b3c4d)."""
    short_id = sanitize_id_for_logging(order_id)
    if order_number:
        return f"{sanitize_string_for_logging(order_number, 16)}/{short_id}"
    return short_id


__all__ = [
    "LOG_FORMAT",
    "LOG_FORMAT_SIMPLE",
    "get_logger",
    "order_ref",
    "sanitize_id_for_logging",
    "sanitize_string_for_logging",
]
