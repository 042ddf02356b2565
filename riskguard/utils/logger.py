"""
Logging configuration for the risk decisioning core.

Provides structured logging for production monitoring and debugging.
Module loggers are children of the "riskguard" logger so a single
handler configured here covers the whole package.
"""

import logging
import sys
from typing import Optional

ROOT_LOGGER_NAME = "riskguard"


def get_logger(name: Optional[str] = None, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (defaults to 'riskguard')
        level: Optional level name applied to the root package logger

    Returns:
        Configured logger instance
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)

    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        handler.setFormatter(formatter)
        root.addHandler(handler)
        root.setLevel(logging.INFO)

    if level:
        root.setLevel(level)

    if not name or name == ROOT_LOGGER_NAME:
        return root
    if not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


# Default logger instance
logger = get_logger()
