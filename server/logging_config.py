"""Logging configuration for Hearth.

One rotating log file (hearth.log under DATA_DIR) captures everything at
DEBUG; the Rich console shows the chosen level. The level comes from the
caller, then HEARTH_LOG_LEVEL, then INFO.

QUIET_LOGGERS caps the client libraries used by the S3 backend and the
gallery client.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme


LOG_FILE_NAME = "hearth.log"
LOG_LEVEL_ENV = "HEARTH_LOG_LEVEL"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

# Third-party loggers and the most verbose level they may emit.
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,  # RequestLoggingMiddleware logs requests
    "botocore": logging.WARNING,
    "boto3": logging.WARNING,
    "s3transfer": logging.WARNING,
    "urllib3": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "multipart": logging.INFO,
    "python_multipart": logging.INFO,
    "PIL": logging.INFO,
}

HEARTH_THEME = Theme({
    "logging.level.info": "bold dark_orange",
    "logging.level.warning": "bold yellow",
    "logging.level.error": "bold red",
})

_logging_initialized = False
_log_file: Optional[Path] = None


def _get_data_dir() -> Path:
    """Return the data directory (same as config.DATA_DIR without circular import)."""
    env = os.environ.get("DATA_DIR")
    if env:
        return Path(env)
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parents[1]


def resolve_level(log_level: Optional[str] = None) -> int:
    """Map a level name to a logging constant; unknown names fall back to INFO."""
    name = log_level or os.environ.get(LOG_LEVEL_ENV) or "INFO"
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(log_level: Optional[str] = None) -> Path:
    """Initialize logging with file and console handlers.

    Safe to call from every CLI command; only the first call configures
    handlers.

    Args:
        log_level: Console level (DEBUG, INFO, WARNING, ERROR). Defaults to
            HEARTH_LOG_LEVEL, then INFO.

    Returns:
        Path of the log file.
    """
    global _logging_initialized, _log_file

    if _logging_initialized:
        return _log_file

    data_dir = _get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    _log_file = data_dir / LOG_FILE_NAME

    file_handler = RotatingFileHandler(
        _log_file,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    console_handler = RichHandler(
        console=Console(theme=HEARTH_THEME),
        rich_tracebacks=True,
        show_time=False,
        show_path=False,
    )
    console_handler.setLevel(resolve_level(log_level))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    # Route alembic output through the root handlers.
    alembic_logger = logging.getLogger("alembic")
    alembic_logger.handlers = []
    alembic_logger.propagate = True

    _logging_initialized = True
    return _log_file


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the specified module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance for the module
    """
    return logging.getLogger(name)
