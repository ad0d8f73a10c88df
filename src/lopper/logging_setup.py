"""Logging configuration for lopper."""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "lopper"


def setup_logging(verbosity: int = 0) -> logging.Logger:
    """Set up logging on stderr so porcelain output on stdout stays parseable.

    Args:
        verbosity: 0 shows warnings only, 1 adds info, 2 or more adds debug.

    Returns:
        Configured package logger.
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logger.setLevel(level)

    handler = RichHandler(
        console=Console(stderr=True),
        show_time=verbosity >= 2,
        show_path=False,
        markup=False,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.addHandler(handler)
    logger.propagate = False
    return logger
