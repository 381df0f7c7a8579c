"""
Centralized logging configuration.

Every module obtains its logger here:

    from config.logging_config import get_logger
    logger = get_logger(__name__)

Job-scoped messages go through ``job_logger`` so they carry a
``[Job:<id>]`` prefix that is easy to grep in the rotating log file.
"""
import logging
import logging.handlers
import os
from pathlib import Path
from typing import Any, MutableMapping, Optional, Tuple

from .constants import (
    LOG_LEVEL, LOG_FORMAT, LOG_FILE,
    LOG_MAX_SIZE_MB, LOG_BACKUP_COUNT
)

ROOT_LOGGER_NAME = 'batch_ocr'


def _file_handler(log_file: str) -> logging.Handler:
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        log_path,
        maxBytes=LOG_MAX_SIZE_MB * 1024 * 1024,
        backupCount=LOG_BACKUP_COUNT,
        encoding='utf-8',
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def setup_logger(
    name: Optional[str] = None,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Get or create a configured logger.

    Args:
        name: Logger name. If None, uses 'batch_ocr'.
        level: Level name; defaults to BATCH_OCR_LOG_LEVEL or LOG_LEVEL.
        log_file: Rotating log file; defaults to BATCH_OCR_LOG_FILE or
            LOG_FILE. An empty string disables file logging.

    Returns:
        Configured logging.Logger instance.
    """
    logger = logging.getLogger(name or ROOT_LOGGER_NAME)

    # Handlers are attached once per logger name
    if logger.handlers:
        return logger

    level = level or os.environ.get('BATCH_OCR_LOG_LEVEL', LOG_LEVEL)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console)

    if log_file is None:
        log_file = os.environ.get('BATCH_OCR_LOG_FILE', LOG_FILE)
    if log_file:
        logger.addHandler(_file_handler(log_file))

    # Our handlers already print; don't duplicate through the root logger
    logger.propagate = False
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Module logger under the configured 'batch_ocr' logger.

    Children share the root's handlers, so only one rotating file
    handler is ever opened.
    """
    root = setup_logger(ROOT_LOGGER_NAME)
    if not name or name == ROOT_LOGGER_NAME:
        return root
    return root.getChild(name)


class JobLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with ``[Job:<id>]``."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[Job:{self.extra['job_id']}] {msg}", kwargs


def job_logger(logger: logging.Logger, job_id: str) -> JobLogAdapter:
    """Wrap ``logger`` so its messages are tagged with ``job_id``."""
    return JobLogAdapter(logger, {'job_id': job_id})


# Usage: from config.logging_config import logger
logger = setup_logger(ROOT_LOGGER_NAME)
