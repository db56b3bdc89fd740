"""
Logging setup.

Every module logs through logging.getLogger(__name__), so the package
namespace logger is the only one that needs a handler. Planner decisions are
logged at debug level, executed actions at info level and failed actions at
error level.
"""

from __future__ import annotations

import logging

PACKAGE_LOGGER = "fleet_reconciler"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: int = logging.INFO, name: str = PACKAGE_LOGGER) -> logging.Logger:
    """
    Attach one stream handler to the package logger and set its level.

    Calling this again only updates the level.
    """

    logger = logging.getLogger(name)
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    logger.setLevel(level)
    logger.propagate = False
    return logger
