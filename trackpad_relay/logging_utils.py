"""
Logging setup for Trackpad Relay.
"""

import logging
import sys
from typing import Union


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: Union[str, int] = "INFO") -> logging.Logger:
    """
    Configure the package logger.

    Installs a single stdout handler on the ``trackpad_relay`` logger.
    Calling it again only updates the level.

    Args:
        level: Level name ("DEBUG", "INFO", ...) or numeric level.

    Returns:
        The package logger.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger("trackpad_relay")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False

    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)

    return logger
