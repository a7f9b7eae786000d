"""
Structured logging setup for the audio encoder.

Configures structlog for JSON-formatted structured logging.  Every log
line includes timestamp, level, service name, and event.  Per-channel
context (channel, kind, attempt) is bound at the call site.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog


def _add_service(service: str) -> structlog.types.Processor:
    """Return a processor that stamps every event with *service*."""

    def processor(
        _logger: Any, _method: str, event_dict: MutableMapping[str, Any],
    ) -> MutableMapping[str, Any]:
        event_dict.setdefault("service", service)
        return event_dict

    return processor


def configure_logging(
    service: str,
    level: str = "INFO",
    *,
    json_output: bool = True,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        service: Service name added to every log line.
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: Render JSON lines; otherwise use the console renderer.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_service(service),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # httpx and httpcore log through the stdlib.
    logging.basicConfig(level=log_level, stream=sys.stderr, force=True)
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))
    logging.getLogger("httpcore").setLevel(max(log_level, logging.WARNING))
