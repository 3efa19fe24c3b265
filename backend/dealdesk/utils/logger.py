"""
Logging utilities.

WHAT: Centralized logging configuration for the store service and engine clients
WHY: Swallowed background failures (cleanup, bulk mark-seen, polling) must still leave a trace
HOW: Python logging with console handler and optional file handler
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from ..core.config import settings

# Libraries that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "sse_starlette")


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None):
    """
    Configure application logging.

    WHAT: Set up root logger with console and (optionally) file handlers
    WHY: Engine clients run embedded and may not want a log file
    HOW: Level/file from arguments, falling back to settings; empty file disables it

    Args:
        level: Log level name (defaults to settings.LOG_LEVEL)
        log_file: Log file path (defaults to settings.LOG_FILE, "" disables)
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    log_path = settings.LOG_FILE if log_file is None else log_file

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(console_handler)

    if log_path:
        path = Path(log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(pathname)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(file_handler)

    if not settings.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(f"Logging initialized (level={level_name}, file={log_path or 'disabled'})")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
