"""Structured logging configuration.

The domain and adapter layers log through stdlib ``logging``; the root
handler renders those records with the same structlog processors as the
application layer, so the agent writes one stream in one format.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

# Libraries that log every request or connection at INFO
_NOISY_LOGGERS = ("uvicorn.access", "urllib3")


def _node_context(node_name: Optional[str]) -> Processor:
    def add_node(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", "gpu_node_agent")
        if node_name:
            event_dict.setdefault("node", node_name)
        return event_dict

    return add_node


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    node_name: Optional[str] = None,
) -> structlog.stdlib.BoundLogger:
    """Configure structlog and route stdlib records through it.

    Args:
        level: Root log level name.
        log_format: ``json`` for machine output, anything else for console.
        node_name: Added to every entry as ``node`` when set.
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _node_context(node_name),
    ]

    if log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return get_logger("gpu_node_agent")


def get_logger(name: Optional[str] = None, **initial_context: Any) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger, optionally bound to extra context."""
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger
