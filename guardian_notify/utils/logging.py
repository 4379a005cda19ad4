# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Structured logging configuration using structlog.

Modules log through the standard library (logging.getLogger(__name__)).
setup_logging routes those records through structlog so every line is
rendered the same way: JSON in production, colored console output in
development. Context bound with delivery_context (delivery id, guardian
id) is merged into every line logged while a delivery is processed.

Example:
    >>> from guardian_notify.utils.logging import setup_logging, delivery_context
    >>> from guardian_notify.core.config import get_settings
    >>> setup_logging(get_settings())
    >>> with delivery_context(delivery_id="d-1", guardian_id="g-1"):
    ...     logging.getLogger(__name__).info("Delivery %s sent", "d-1")
"""

import logging
import sys
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from guardian_notify.core.config.settings import Settings

_QUIET_LOGGERS = (
    "uvicorn",
    "uvicorn.access",
    "uvicorn.error",
    "httpx",
    "httpcore",
    "sqlalchemy",
    "aiosqlite",
    "asyncio",
)


def _renderer(settings: "Settings") -> Processor:
    if settings.is_development or settings.debug:
        return structlog.dev.ConsoleRenderer(colors=True)
    return structlog.processors.JSONRenderer()


def setup_logging(settings: "Settings") -> None:
    """Configure structured logging for the application.

    Args:
        settings: Application settings containing log_level and debug flag.
    """
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    final_processors: list[Processor] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if not (settings.is_development or settings.debug):
        final_processors.append(structlog.processors.format_exc_info)
    final_processors.append(_renderer(settings))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=final_processors,
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    for logger_name in _QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger("guardian_notify").setLevel(log_level)


@contextmanager
def delivery_context(**ids: str | None) -> Iterator[None]:
    """Attach delivery identifiers to every log line inside the block.

    Unset identifiers are skipped. The previous context is restored on
    exit, so nested blocks and concurrent tasks do not leak ids.

    Args:
        **ids: Identifiers such as delivery_id, guardian_id, message_id.
    """
    bound = {key: value for key, value in ids.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield
