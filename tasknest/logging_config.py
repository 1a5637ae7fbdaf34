"""Logging setup for tasknest.

Records go to a rotating file under ``~/.tasknest/logs``. The level comes
from the ``log_level`` argument, then the TASKNEST_LOG_LEVEL environment
variable, then INFO. Console output is opt-in for command-line use, and
the database driver loggers are kept at WARNING or above so that a DEBUG
session shows task manager activity rather than SQL chatter.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional


LOG_DIR = Path.home() / ".tasknest" / "logs"
LOG_FILE = LOG_DIR / "tasknest.log"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_BYTES = 10 * 1024 * 1024  # 10MB
BACKUP_COUNT = 5

QUIET_LOGGERS = ("aiosqlite", "sqlalchemy.engine", "sqlalchemy.pool")


def resolve_level(log_level: Optional[str] = None) -> int:
    """Turn a level name into a logging level.

    Args:
        log_level: Level name, case-insensitive. If None, TASKNEST_LOG_LEVEL
                   is used. Unknown names fall back to INFO.

    Returns:
        Numeric logging level
    """
    name = (log_level or os.getenv("TASKNEST_LOG_LEVEL") or "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _build_handlers(console: bool) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [
        RotatingFileHandler(
            LOG_FILE,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    return handlers


def setup_logging(
    log_level: Optional[str] = None,
    console: bool = False
) -> None:
    """Configure the root logger for a tasknest process.

    Replaces any existing root handlers, so calling it twice does not
    duplicate output.

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        console: If True, also echo records to stderr

    Example:
        >>> setup_logging()
        >>> setup_logging(log_level="DEBUG", console=True)
    """
    level = resolve_level(log_level)
    LOG_DIR.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in _build_handlers(console):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logging.getLogger(__name__).info(
        f"Logging initialized: level={logging.getLevelName(level)}, "
        f"file={LOG_FILE}, console={console}"
    )


def get_logger(name: str) -> logging.Logger:
    """Get the logger for a module, typically called with ``__name__``.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.error("Sync failed", exc_info=True)
    """
    return logging.getLogger(name)
