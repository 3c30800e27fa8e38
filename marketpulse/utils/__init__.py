"""Utility modules for logging and presentation helpers."""

from marketpulse.utils.logging import (
    bind_request_context,
    bind_session_context,
    configure_logging,
    get_logger,
)

__all__ = ["bind_request_context", "bind_session_context", "configure_logging", "get_logger"]
