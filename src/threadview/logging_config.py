"""Optional structlog setup for applications embedding threadview.

The library only emits events through ``structlog.get_logger()``; hosts that
have no structlog configuration of their own call ``configure_logging()``
once at startup.  Output goes to stderr so it never mixes with a host's
stdout.
"""

from __future__ import annotations

import logging
import sys

import structlog

from threadview.config import get_settings


def configure_logging(production: bool | None = None, level: str | None = None) -> None:
    """Render threadview events as JSON (production) or console lines.

    Args:
        production: JSON output if ``True``.  ``None`` reads
            ``Settings.production``.
        level: Minimum level name such as ``"warning"``.  ``None`` reads
            ``Settings.log_level``, which defaults to ``info`` in production
            and ``debug`` otherwise.
    """
    settings = get_settings()
    if production is None:
        production = settings.production
    if level is None:
        level = settings.log_level or ("info" if production else "debug")

    renderer: structlog.types.Processor
    if production:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping()[level.upper()]
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service="threadview")
