"""structlog configuration shared by the API server and the CLI."""

import logging
import sys

import structlog


def setup_logging(debug: bool = False, json_output: bool = False, quiet: bool = False) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        debug: Log at DEBUG instead of INFO
        json_output: Render JSON lines instead of the console renderer
        quiet: Only log warnings and errors (ignored when debug is set)
    """
    if debug:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)
    logging.getLogger().setLevel(level)

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
