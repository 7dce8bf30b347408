"""
Logging setup for the metrics layer.

One stdout handler is attached to the ``src`` package logger; every module
logger (``get_logger(__name__)``) propagates to it.  The level follows
``Settings.log_level``.
"""
from __future__ import annotations

import logging
import sys

from src.core.config import get_settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
PACKAGE_LOGGER = "src"


def _configure_package_logger() -> logging.Logger:
    root = logging.getLogger(PACKAGE_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(handler)
    root.setLevel(getattr(logging, get_settings().log_level.upper(), logging.INFO))
    return root


def get_logger(name: str) -> logging.Logger:
    """Module logger; outside the ``src`` package it gets its own handler."""
    package_root = _configure_package_logger()
    logger = logging.getLogger(name)
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + ".") and not logger.handlers:
        for handler in package_root.handlers:
            logger.addHandler(handler)
        logger.setLevel(package_root.level)
    return logger
