from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from buildforge.core.types import Resource


def configure_logging(level: str = "INFO", json: bool = True) -> None:
    """Configure structlog for the buildforge controllers.

    In production (json=True) uses JSONRenderer for machine-parseable output.
    In development (json=False) uses ConsoleRenderer for human-readable output.

    Args:
        level: Standard logging level string, e.g. "DEBUG", "INFO", "WARNING".
        json: If True, render log entries as JSON. If False, use coloured console output.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)


def bind_object(logger: structlog.BoundLogger, obj: Resource) -> structlog.BoundLogger:
    """Bind the kind, namespace and name of *obj* onto *logger*."""
    return logger.bind(
        kind=str(obj.KIND),
        namespace=obj.metadata.namespace,
        name=obj.metadata.name,
    )
