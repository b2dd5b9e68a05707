# sfdc_batch/utils/logger.py
import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from sfdc_batch.core.config import settings

CONSOLE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
FILE_FORMAT = (
    "%(asctime)s - %(name)s - %(process)d - %(levelname)s - "
    "%(module)s.%(funcName)s:%(lineno)d - %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Libraries whose per-request chatter duplicates the API client's own debug lines
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def _resolve_level() -> int:
    if settings.DEBUG_MODE:
        return logging.DEBUG
    return getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)


def _file_handler(filename: str) -> Optional[logging.Handler]:
    try:
        handler = RotatingFileHandler(
            filename,
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as e:
        sys.stderr.write(f"Could not open log file {filename}: {e}\n")
        return None
    handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
    return handler


def setup_logging() -> logging.Logger:
    """
    Configures the package logger: a short console format on stdout and, when
    LOG_FILENAME is set, a detailed rotating log file. Safe to call repeatedly.
    """
    level = _resolve_level()
    logger = logging.getLogger(settings.APP_NAME)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, DATE_FORMAT))
    logger.addHandler(console)

    if settings.LOG_FILENAME:
        handler = _file_handler(settings.LOG_FILENAME)
        if handler is not None:
            logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug(f"Logging configured at {logging.getLevelName(level)} (file: {settings.LOG_FILENAME or 'none'})")
    return logger
