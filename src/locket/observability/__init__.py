"""Observability module for locket.

Structured logging with JSON output for production and colored console
output for development, plus helpers to keep key material and secret values
out of log events.

Example:
    >>> from locket.observability import get_logger
    >>>
    >>> logger = get_logger(__name__)
    >>> logger.info("locket.server.started", allow_cidr="10.0.0.0/24")
"""

from locket.observability.logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    is_debug_mode,
    sanitize_for_logging,
    unbind_context,
)

__all__ = [
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "is_debug_mode",
    "sanitize_for_logging",
    "unbind_context",
]
