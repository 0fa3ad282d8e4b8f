"""Structured logging for pricevault.

Every log entry is an event name plus key-value context, e.g.::

    {"app": "pricevault", "component": "dynamodb", "table": "prices",
     "event": "query_completed", "pages": 3, "items": 250}
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Tag every entry with the application identifier."""
    event_dict["app"] = "pricevault"
    return event_dict


def setup_logging(level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structlog on top of the standard logging module.

    Libraries importing pricevault never need to call this; it is used by the
    CLI and by applications that want pricevault's log format. Safe to call
    repeatedly; the stderr handler is replaced on every call.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level, force=True)

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        add_app_context,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    # Module-level loggers are lazy proxies; not caching lets a later call
    # reconfigure them.
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(
    name: str | None = None,
    component: str | None = None,
    **initial_context: Any,
) -> Any:
    """Return a lazily configured structlog logger bound with component context."""
    context: dict[str, Any] = {}
    if component:
        context["component"] = component
    context.update(initial_context)
    if name is None:
        return structlog.get_logger(**context)
    return structlog.get_logger(name, **context)
