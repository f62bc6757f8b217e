from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import cast

import structlog
from structlog.typing import FilteringBoundLogger

from revision_api.config.settings import Settings

NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(settings: Settings) -> None:
    """Configure structlog for the revision engine and plain stdlib logging beside it.

    Revision fields bound with :func:`log_context` are merged into every
    structlog event emitted inside the block.
    """

    level = logging.getLevelName(settings.log_level)
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.log_json:
        final_processor: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*shared_processors, final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        level=settings.log_level,
        format="%(levelname)s %(name)s %(message)s",
        stream=sys.stdout,
    )
    # Gemini request lines would otherwise repeat every note generation.
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def log_context(**values: object) -> Iterator[None]:
    """Bind ``user_id``, ``scope_key`` and similar fields for the duration of the block.

    ``None`` values are skipped so optional fields never show up as nulls.
    """

    bound = {key: value for key, value in values.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def get_logger(name: str | None = None) -> FilteringBoundLogger:
    """Return a structlog logger instance."""

    logger = structlog.get_logger(name)
    return cast(FilteringBoundLogger, logger)


__all__ = ["configure_logging", "get_logger", "log_context"]
