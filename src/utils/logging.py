# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Structured logging configuration using structlog.

Service modules log through the standard library
(``logging.getLogger(__name__)`` with %-style arguments). setup_logging()
routes those records through structlog's ProcessorFormatter so that both
stdlib and structlog loggers share one renderer: colored console output in
development, JSON lines everywhere else.

apply_workflow binds ``workflow_id`` to the logging context with
workflow_log_context(), so every record emitted during an apply carries
it. Callers that know the operator can bind ``operator`` too.

Example:
    >>> from src.utils.logging import setup_logging, workflow_log_context
    >>> from src.core.config import get_settings
    >>> setup_logging(get_settings())
    >>> with workflow_log_context("school_progression_2026", "admin@school.org"):
    ...     logging.getLogger(__name__).info("Applying %d operations", 42)
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from src.core.config.settings import Settings

_NOISY_LOGGERS = (
    "uvicorn.access",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "aiosqlite",
    "asyncio",
)


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging(settings: "Settings") -> None:
    """Configure structured logging for the application.

    Args:
        settings: Application settings containing log_level and debug flag.
    """
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    shared = _shared_processors()

    renderer: Processor
    if settings.is_development or settings.debug:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger("src").setLevel(log_level)


@contextmanager
def workflow_log_context(workflow_id: str, operator: str | None = None) -> Iterator[None]:
    """Bind workflow_id (and operator) for the duration of a block.

    Args:
        workflow_id: Workflow being operated on.
        operator: Identity of the operator, if known.
    """
    values: dict[str, object] = {"workflow_id": workflow_id}
    if operator:
        values["operator"] = operator
    with structlog.contextvars.bound_contextvars(**values):
        yield
