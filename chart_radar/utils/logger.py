"""
Structured logging configuration and logger factory.

Uses structlog for JSON-formatted logs with a bound module name.
"""

import logging
import sys

import structlog


def setup_logging(log_level: str = "INFO") -> None:
    """Configure structlog with timestamped JSON output on stderr.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Raises:
        ValueError: If log_level is not a known level name
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        # Resolve stderr per logger so redirected streams are honored
        logger_factory=lambda *args: structlog.PrintLogger(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(module_name: str):
    """Return a lazily bound logger with module context.

    Args:
        module_name: Short dotted name of the calling module

    Returns:
        Logger proxy that binds ``module`` on first use
    """
    return structlog.get_logger(module=module_name)
