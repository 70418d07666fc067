"""
Logging configuration for the Dealsuite sync pipeline.

This module provides centralized logging setup used across all pipeline
components. It configures consistent log formatting, log levels, and
handlers for the entire application.

The session cookie handled by the pipeline must never reach a log record.
Modules log derived facts only (length, detected cookie names, warning
flags).

Usage:
    from dealsuite_sync.config.logging_config import setup_logging, get_logger

    # At application startup
    setup_logging()

    # In each module
    logger = get_logger(__name__)
    logger.info("Processing started")

Author: Leonardo Pacciani-Mori
License: MIT
"""

import logging
import sys
from typing import Optional, TextIO


# =============================================================================
# DEFAULT CONFIGURATION
# =============================================================================

# Includes: timestamp, logger name, log level, and the actual message.
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_LOG_LEVEL = logging.INFO


# =============================================================================
# FUNCTION DEFINITIONS
# =============================================================================

def setup_logging(
    level: int = DEFAULT_LOG_LEVEL,
    log_format: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    suppress_third_party: bool = True,
    stream: Optional[TextIO] = None
) -> None:
    """
    Configure logging for the entire application.

    This function sets up the root logger with consistent formatting and
    optionally suppresses verbose logging from third-party libraries that
    can clutter the log output.

    Args:
        level: The logging level threshold. Defaults to INFO.
        log_format: The format string for log messages.
        date_format: The strftime format string for timestamps.
        suppress_third_party: If True, sets third-party library loggers to
            WARNING level to reduce noise (HTTP clients, the OpenAI SDK,
            the PostgreSQL driver).
        stream: Stream the handler writes to. Defaults to stdout.

    Returns:
        None

    Example:
        >>> setup_logging(level=logging.DEBUG)
        >>> logger = get_logger(__name__)
        >>> logger.debug("Debug message will now be shown")
    """
    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt=date_format,
        handlers=[
            logging.StreamHandler(stream or sys.stdout)
        ]
    )

    if suppress_third_party:
        _suppress_third_party_logging()


def _suppress_third_party_logging() -> None:
    """
    Suppress verbose logging from third-party libraries.

    Sets the HTTP client, OpenAI SDK, database driver and event loop
    loggers to WARNING level. Called automatically by setup_logging().

    Returns:
        None
    """
    loggers_to_suppress = [
        # HTTP libraries can be very chatty
        "aiohttp",
        "aiohttp.access",
        "urllib3",
        "httpx",
        "httpcore",

        # OpenAI SDK request tracing
        "openai",

        # Async event loop debugging
        "asyncio",

        # PostgreSQL driver
        "psycopg2",
    ]

    for logger_name in loggers_to_suppress:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: The name of the logger, typically the module's __name__.
            If None, returns the root logger.

    Returns:
        logging.Logger: A configured logger instance for the specified name.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Rendered %d characters", 1234)
        2024-01-15 10:30:45 - dealsuite_sync.scraping.retry - INFO - Rendered 1234 characters
    """
    return logging.getLogger(name)


def set_log_level(level: int, logger_name: Optional[str] = None) -> None:
    """
    Dynamically change the log level for a specific logger or the root logger.

    Args:
        level: The new logging level to set.
        logger_name: The name of the logger to modify. If None, modifies
            the root logger which affects all loggers.

    Returns:
        None

    Example:
        >>> # Enable debug logging for the scraping stage only
        >>> set_log_level(logging.DEBUG, "dealsuite_sync.scraping")
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
