"""Centralized logging for hookrelay.

Implements LoggerProtocol on top of structlog. Components receive a logger
by constructor injection and fall back to the context logger otherwise.

Usage:
    from hookrelay.logging import configure_logging, get_component_logger

    # At application startup (once)
    configure_logging(level="INFO", json_output=True)

    # In a component
    self._logger = get_component_logger("Registry", logger)
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Generator, Optional

import structlog

from hookrelay.protocols import LoggerProtocol

# Module state
_CONFIGURED = False

_current_logger: ContextVar[Optional[LoggerProtocol]] = ContextVar(
    "current_logger",
    default=None
)


class Logger:
    """LoggerProtocol implementation backed by structlog."""

    def __init__(
        self,
        base_logger: Any = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """Initialize logger.

        Args:
            base_logger: Underlying structlog logger (created if None)
            context: Bound context fields
        """
        self._logger = base_logger or structlog.get_logger()
        self._context = context or {}

        if self._context:
            self._logger = self._logger.bind(**self._context)

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._logger.debug(msg, **kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._logger.info(msg, **kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._logger.warning(msg, **kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._logger.error(msg, **kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        """Log exception with traceback."""
        self._logger.exception(msg, **kwargs)

    def bind(self, **kwargs: Any) -> "Logger":
        """Create child logger with additional context."""
        new_context = {**self._context, **kwargs}
        return Logger(
            base_logger=structlog.get_logger(),
            context=new_context,
        )


def configure_logging(
    level: str = "INFO",
    *,
    json_output: bool = True,
) -> None:
    """Configure logging for the process.

    This should be called ONCE at application startup; later calls are
    ignored.

    Args:
        level: Default log level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON; if False, console format
    """
    global _CONFIGURED

    if _CONFIGURED:
        return

    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        stream=sys.stdout,
    )

    # Silence noisy libraries
    for noisy in ["httpx", "httpcore", "redis"]:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

    if json_output:
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            timestamper,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )

    _CONFIGURED = True


def get_current_logger() -> LoggerProtocol:
    """Get the context-bound logger, or a default one."""
    logger = _current_logger.get()
    if logger is None:
        return Logger()
    return logger


def get_component_logger(
    component: str,
    logger: Optional[LoggerProtocol] = None,
) -> LoggerProtocol:
    """Get a logger bound to a component name.

    This is the canonical way to initialize a logger in hookrelay components.

    Args:
        component: Component name (e.g., "Registry", "DispatchBus")
        logger: Optional injected logger. If None, uses context logger.

    Returns:
        LoggerProtocol bound to the component name
    """
    base_logger = logger or get_current_logger()
    return base_logger.bind(component=component)


@contextmanager
def bind_logger_context(**kwargs: Any) -> Generator[LoggerProtocol, None, None]:
    """Temporarily bind additional context to the current logger.

    Usage:
        with bind_logger_context(shortname="deploy"):
            get_current_logger().info("trigger_published")
    """
    bound = get_current_logger().bind(**kwargs)
    token = _current_logger.set(bound)

    try:
        yield bound
    finally:
        _current_logger.reset(token)


__all__ = [
    "configure_logging",
    "get_component_logger",
    "Logger",
    "get_current_logger",
    "bind_logger_context",
]
