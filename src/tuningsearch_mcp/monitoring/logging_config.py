"""Structured logging for the TuningSearch MCP server.

Everything is written to stderr: stdout carries the MCP stdio transport and
a stray log line there corrupts the protocol stream. Library modules log
through ``logging.getLogger(__name__)``; those records pass through the same
structlog chain as loggers from :func:`get_logger`.
"""

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor

SERVICE_NAME = "tuningsearch-mcp"

SENSITIVE_KEYS = frozenset({"api_key", "authorization", "token", "password"})

QUIET_LOGGERS = ("httpx", "httpcore", "mcp.server.lowlevel.server")


def add_service_name(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["service"] = SERVICE_NAME
    return event_dict


def redact_sensitive(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask values bound under credential-like keys.

    The API key travels in a bearer header, so it must never reach a log
    line even if someone binds the headers or settings as context.
    """
    for key in event_dict.keys() & SENSITIVE_KEYS:
        event_dict[key] = "[REDACTED]"
    return event_dict


def shared_processors() -> list[Processor]:
    """Processors applied to every record before rendering."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        add_service_name,
        redact_sensitive,
    ]


def renderer_processors(json_output: bool) -> list[Processor]:
    """Final processors turning an event dict into a line of text."""
    if json_output:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=False)]


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Route stdlib and structlog logging to one stderr handler.

    Args:
        log_level: Root log level name.
        json_output: Render JSON lines instead of console text.
        stream: Output stream, stderr by default.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *renderer_processors(json_output),
        ],
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    structlog.configure(
        processors=[*shared_processors(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, bound to ``name`` if given."""
    return structlog.get_logger(name)


class LogContext:
    """Bind key-value pairs to every log line inside a ``with`` block.

    Used around tool calls so each record carries the tool name. Previous
    values of the same keys are restored on exit.
    """

    def __init__(self, **kwargs: Any) -> None:
        self._values = kwargs
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> "LogContext":
        self._tokens = structlog.contextvars.bind_contextvars(**self._values)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
        self._tokens = {}
