"""
structlog setup for the API process and the fan-out workers.

Every event carries a ``service`` key ("api" or "worker") so the two streams
can be told apart once shipped to the same sink.
"""

from __future__ import annotations

import logging

import structlog


def level_number(level: str) -> int:
    """Numeric stdlib level for a name such as "info" or "WARNING"."""
    number = logging.getLevelName(level.upper())
    if not isinstance(number, int):
        raise ValueError(f"unknown log level {level!r}")
    return number


def configure_logging(level: str = "info", fmt: str = "json", *, service: str = "api") -> None:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if fmt == "json":
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_number(level)),
    )
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service)
