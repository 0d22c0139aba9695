# src/lookout/core/logging.py
"""Structured logging configuration for the client's own diagnostics.

The client logs through structlog (``structlog.get_logger(__name__)``).
Nothing is configured on import: a monitoring client must not change how
its host application logs. Hosts that want to see client diagnostics
call configure_logging(), which routes structlog through stdlib logging
with ProcessorFormatter so stdlib loggers of the HTTP stack render the
same way. ``debug=True`` in ClientSettings uses configure_debug_logging(),
which keeps any structlog configuration the host has already made.

Only the ``lookout`` logger tree gets a handler; the host's root logger
is left alone.
"""

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.stdlib import ProcessorFormatter

LOGGER_NAME = "lookout"

# HTTP client internals log every connection at DEBUG
_NOISY_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "httpcore.connection",
    "httpcore.http11",
)


def _remove_internal_fields(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Remove ProcessorFormatter bookkeeping fields from output.

    ProcessorFormatter always adds _record and _from_structlog; a missing
    key would mean the formatter contract changed.
    """
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
    stream: TextIO | None = None,
    configure_structlog: bool = True,
    quiet_http_loggers: bool = True,
) -> logging.Handler:
    """Configure structlog and the ``lookout`` stdlib logger.

    Args:
        json_output: If True, output JSON. If False, human-readable.
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        stream: Output stream (default stderr)
        configure_structlog: If False, the process-wide structlog
            configuration is left as it is and only the ``lookout``
            handler is installed
        quiet_http_loggers: Raise the httpx/httpcore loggers to WARNING

    Returns:
        The installed handler, so callers can remove it again.
    """
    log_level = getattr(logging, level.upper())

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        final_processors: list[Any] = [
            _remove_internal_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final_processors = [
            _remove_internal_fields,
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    if configure_structlog:
        structlog.configure(
            processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            # Tests reconfigure logging; cached loggers would keep the old chain
            cache_logger_on_first_use=False,
        )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        ProcessorFormatter(
            processors=final_processors,
            foreign_pre_chain=shared_processors,
        )
    )

    client_logger = logging.getLogger(LOGGER_NAME)
    client_logger.handlers = [handler]
    client_logger.setLevel(log_level)
    client_logger.propagate = False

    if quiet_http_loggers:
        noisy_level = max(log_level, logging.WARNING)
        for logger_name in _NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(noisy_level)

    return handler


def configure_debug_logging(stream: TextIO | None = None) -> logging.Handler:
    """Show client diagnostics at DEBUG for ``ClientSettings.debug``.

    A structlog configuration the host already made is kept; structlog is
    only routed through stdlib logging when nothing has configured it yet.
    Loggers outside the ``lookout`` tree keep their levels.
    """
    return configure_logging(
        level="DEBUG",
        stream=stream,
        configure_structlog=not structlog.is_configured(),
        quiet_http_loggers=False,
    )
