"""
Structured logging for MarketPulse using structlog.

Every event carries the service name and version; events logged while a
request is handled also carry its request id and, once the bearer token is
resolved, the caller's user id and role. Money amounts and enum members can
be passed to the logger as-is: they are rendered as plain strings.
"""

import logging
import sys
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

from marketpulse import __version__
from marketpulse.config import get_settings

SERVICE_NAME = "marketpulse"


def add_service_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("version", __version__)
    return event_dict


def add_severity(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add severity level for structured logging."""
    event_dict["severity"] = method_name.upper()
    return event_dict


def render_domain_values(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Render Decimal amounts, enum members and dates as strings.

    JSONRenderer would otherwise fall back to repr(), logging
    ``Decimal('150000.00')`` instead of ``150000.00``.
    """
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = str(value)
        elif isinstance(value, Enum):
            event_dict[key] = value.value
        elif isinstance(value, (datetime, date)):
            event_dict[key] = value.isoformat()
    return event_dict


def build_processors(json_output: bool) -> list[Processor]:
    """
    Processor chain for the chosen output.

    JSON output turns tracebacks into structured dicts; the console
    renderer formats exceptions itself.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_service_context,
        add_severity,
        render_domain_values,
    ]
    if json_output:
        processors += [
            structlog.processors.dict_tracebacks,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(sort_keys=True),
        ]
    else:
        processors += [
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=False, sort_keys=False),
        ]
    return processors


def configure_logging() -> None:
    """
    Configure structured logging for the application.
    Uses JSON format in production, console format in development.
    """
    settings = get_settings()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )

    json_output = settings.log_format == "json" and not settings.dev_mode
    structlog.configure(
        processors=build_processors(json_output),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_request_context(request_id: str, **context: Any) -> None:
    """Start a fresh log context for one HTTP request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **context)


def bind_session_context(user_id: str, role: Optional[str] = None) -> None:
    """Tag the rest of the request's events with the authenticated caller."""
    context = {"user_id": user_id}
    if role is not None:
        context["role"] = role
    structlog.contextvars.bind_contextvars(**context)


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
