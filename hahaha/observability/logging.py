"""Structured logging configuration using structlog.

Verbosity is set per namespace with a filter expression such as
``info,hahaha.queue=debug,kubernetes_asyncio=warning``: a bare level is the
default, ``namespace=level`` pairs override it for that namespace and its
children.  structlog loggers live under ``hahaha.<component>``; the Kubernetes
client and its transport log through the stdlib ``logging`` module and are
rendered by the same JSON pipeline.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from typing import Any, cast

import structlog
from structlog.typing import EventDict, FilteringBoundLogger, WrappedLogger

_ROOT_NAMESPACE = "hahaha"

_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# structlog method name -> numeric level
_METHOD_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "msg": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "exception": logging.ERROR,
    "critical": logging.CRITICAL,
    "fatal": logging.CRITICAL,
}


@dataclass(frozen=True)
class LogFilter:
    """Parsed namespace filter expression."""

    default: int = logging.INFO
    directives: dict[str, int] = field(default_factory=dict)

    def level_for(self, namespace: str) -> int:
        """Return the threshold for ``namespace`` (longest matching prefix wins)."""
        best: str | None = None
        for prefix in self.directives:
            if (namespace == prefix or namespace.startswith(prefix + ".")) and (
                best is None or len(prefix) > len(best)
            ):
                best = prefix
        return self.directives[best] if best is not None else self.default

    @property
    def minimum(self) -> int:
        return min([self.default, *self.directives.values()])


def parse_log_filter(expression: str) -> LogFilter:
    """Parse ``level,ns=level,...``; raises ValueError on unknown levels."""
    default = logging.INFO
    directives: dict[str, int] = {}
    for part in expression.split(","):
        part = part.strip()
        if not part:
            continue
        namespace, sep, level_name = part.partition("=")
        if not sep:
            level_name, namespace = namespace, ""
        level = _LEVELS.get(level_name.strip().lower())
        if level is None:
            raise ValueError(f"Invalid log level {level_name!r} in filter {expression!r}")
        if namespace.strip():
            directives[namespace.strip()] = level
        else:
            default = level
    return LogFilter(default=default, directives=directives)


_active_filter = LogFilter()


def _filter_by_namespace(_logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    component = event_dict.get("component")
    namespace = f"{_ROOT_NAMESPACE}.{component}" if component else _ROOT_NAMESPACE
    if _METHOD_LEVELS.get(method_name, logging.INFO) < _active_filter.level_for(namespace):
        raise structlog.DropEvent
    return event_dict


def setup_logging(expression: str = "info") -> LogFilter:
    """Configure structlog and stdlib logging for JSON output to stderr."""
    global _active_filter
    log_filter = parse_log_filter(expression)
    _active_filter = log_filter

    shared: list[Any] = [
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
    ]

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _filter_by_namespace,
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_filter.minimum),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Third-party libraries (kubernetes_asyncio, aiohttp, uvicorn) use stdlib logging.
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[structlog.stdlib.add_logger_name, *shared],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_filter.default)
    for namespace, level in log_filter.directives.items():
        if namespace != _ROOT_NAMESPACE and not namespace.startswith(_ROOT_NAMESPACE + "."):
            logging.getLogger(namespace).setLevel(level)

    return log_filter


def get_logger(component: str) -> FilteringBoundLogger:
    """Get a logger bound with a component name (namespace ``hahaha.<component>``)."""
    return cast(FilteringBoundLogger, structlog.get_logger(component=component))
