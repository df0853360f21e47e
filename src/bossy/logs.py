"""Logging setup for bossy.

Library modules only call ``structlog.get_logger(__name__)``; front ends call
:func:`configure_logging` once at startup.
"""

import logging
import sys

import structlog
from rich.console import Console
from rich.logging import RichHandler


def configure_logging(
    level: str = "WARNING",
    json: bool = False,
    handler: logging.Handler | None = None,
) -> None:
    """
    Route structlog through the stdlib logging tree.

    Args:
        level: Root log level name (DEBUG, INFO, WARNING, ...).
        json: Render events as JSON lines instead of key=value pairs.
        handler: Destination handler. Defaults to a rich handler on stderr.
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.WARNING))
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)

    if handler is None:
        handler = RichHandler(
            console=Console(file=sys.stderr),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
        )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
