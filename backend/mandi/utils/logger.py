"""
Logging utilities.

WHAT: Centralized logging configuration for the mandi backend
WHY: Session events, fallbacks and settlements must be traceable per session code
HOW: Python logging with file and console handlers, configured once at startup
"""

import logging
import sys
from pathlib import Path

from ..core.config import settings

CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(pathname)s:%(lineno)d - %(message)s'

# Third-party loggers that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(level: str | None = None, log_file: str | None = None):
    """
    Configure application logging.

    WHAT: Set up root logger with file and console handlers
    WHY: Logs must land in a file and stay visible in the console
    HOW: Create handlers with formatters, set levels from config

    Args:
        level: Optional override for settings.LOG_LEVEL
        log_file: Optional override for settings.LOG_FILE
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    log_path = Path(log_file or settings.LOG_FILE)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    root_logger.addHandler(console_handler)

    file_handler = logging.FileHandler(log_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(f"Logging initialized (level={level_name}, file={log_path})")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
