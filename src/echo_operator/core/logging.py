"""
Structured logging for the Echo operator.

Every line emitted during a reconciliation pass carries the resource
identity bound by :class:`LogContext`.

Usage::

    logger = get_logger(__name__)
    async with LogContext(echo="default/hello", worker=2):
        logger.info("job_created", job="echo-job-hello")

Output (JSON format)::

    {"@timestamp": "...", "log.level": "info", "log.logger": "echo_operator.controller.reconciler",
     "service.name": "echo-operator", "echo": "default/hello", "worker": 2,
     "event": "job_created", "job": "echo-job-hello"}
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "echo-operator"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _ecs_field_names(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Rename structlog's default keys to their ECS counterparts."""
    for key, ecs_key in (("timestamp", "@timestamp"), ("level", "log.level"), ("logger_name", "log.logger")):
        if key in event_dict:
            event_dict[ecs_key] = event_dict.pop(key)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "echo-operator",
) -> None:
    """Configure structlog for the operator process.

    Args:
        level: Standard level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: True for JSON, False for console, None for JSON unless stdout is a tty
        service: Value of the ``service.name`` field
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    numeric_level = logging.getLevelNamesMapping()[level.upper()]
    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]
    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            _ecs_field_names,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # The kubernetes client logs through the standard library
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    """Get a lazily configured structured logger.

    ``name`` is carried as the ``logger_name`` field of every event.
    """
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(logger_name=name)


class LogContext:
    """Bind contextvars for the duration of a block (sync or async).

    Context lives in contextvars, so concurrent worker tasks never see
    each other's bindings.
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        structlog.contextvars.bind_contextvars(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self._context)

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *args: Any) -> None:
        self.__exit__(*args)


__all__ = [
    "configure_logging",
    "get_logger",
    "LogContext",
]
