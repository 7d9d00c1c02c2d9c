"""
Structured Logging with Structlog.

JSON logs carrying the service identity plus whatever request context the
HTTP middleware binds (request id and a shortened dashboard session id).
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from accountdash.config import settings

SESSION_ID_PREFIX = 8


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application-level context to all log entries."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def shorten_session_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """The session id doubles as the cookie value; only a prefix is ever logged."""
    session_id = event_dict.get("session_id")
    if isinstance(session_id, str) and len(session_id) > SESSION_ID_PREFIX:
        event_dict["session_id"] = session_id[:SESSION_ID_PREFIX] + "..."
    return event_dict


def setup_logging() -> None:
    """
    Configure structured logging with structlog.

    Logs are formatted as JSON for machine parsing with the following structure:
    {
        "event": "reconcile_finished",
        "level": "info",
        "timestamp": "2025-01-08T12:00:00.123456Z",
        "logger": "accountdash.services.reconciler",
        "service": "account-dashboard",
        "version": "0.1.0",
        "request_id": "req-123",
        "session_id": "3f2a9c01...",
        ...additional context
    }
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        shorten_session_id,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
