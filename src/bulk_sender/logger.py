"""Logging utilities for the bulk sender.

This module provides a centralized logging helper. The actual logging setup
(level, handlers, format) is configured via ``logging.basicConfig()`` in the
entry points (:mod:`bulk_sender.server`, :mod:`bulk_sender.cli`) to avoid
duplicate handlers.

Example:
    Typical usage in a module::

        from bulk_sender.logger import get_logger

        logger = get_logger("Scheduler")
        logger.info("Worker pool started")
"""

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = "BulkSender") -> logging.Logger:
    """Retrieve a logger instance.

    Returns a standard library logger with the specified name. Handlers and
    formatters are left to the application entry point.

    Args:
        name: The logger name. Defaults to "BulkSender".

    Returns:
        A ``logging.Logger`` instance bound to the given name.
    """
    return logging.getLogger(name)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for an entry point.

    Args:
        level: Level name such as ``"DEBUG"`` or ``"INFO"``. Unknown names
            fall back to INFO.
    """
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        force=True,
    )
