import logging
import os

# top-level package name; every module logger (getLogger(__name__)) is a child
PACKAGE_LOGGER = __name__.partition(".")[0]
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def get_logger(name=None, level=None):
    """
    Return the package logger (or the named one) with a single stream handler.
    Module code uses logging.getLogger(__name__); applications call this once
    at startup so those records have somewhere to go.

    `level` defaults to BACKOFFICE_LOG_LEVEL, else INFO.
    """
    logger = logging.getLogger(name or PACKAGE_LOGGER)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    if level is None:
        level = logging.getLevelName((os.environ.get("BACKOFFICE_LOG_LEVEL") or "INFO").strip().upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)
    return logger
