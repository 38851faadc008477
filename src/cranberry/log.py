"""Structured logging setup.

Components never reach for a process-wide logger on their own: each one
takes a ``logger`` argument and falls back to ``structlog.get_logger``
only when none is supplied.
"""

import logging

import structlog


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog for console or JSON output.

    Args:
        log_level: Minimum level to emit (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Render JSON lines instead of the colored console format

    Examples:
        >>> configure_logging(log_level="DEBUG")
        >>> log = get_logger(plan="release")
        >>> log.info("executing plan")
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

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
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(**bindings):
    """Return a structlog logger bound to the given key/value pairs."""
    return structlog.get_logger("cranberry").bind(**bindings)
