"""Shared service logger.

Every module logs through ``from logger import logger`` so the whole service
writes to a single named logger with one format.
"""

import logging
import sys

from config import LOG_LEVEL

LOGGER_NAME = "dashboard_service"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _build_logger() -> logging.Logger:
    log = logging.getLogger(LOGGER_NAME)
    if not log.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log.addHandler(handler)
    log.setLevel(LOG_LEVEL.upper())
    log.propagate = False
    return log


logger = _build_logger()
