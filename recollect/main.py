"""Application Bootstrap (Entry Point)."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .cli import app
from .config import get_settings

# Logging configuration constants
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024  # 5MB max log file size
LOG_FILE_BACKUP_COUNT = 3  # Keep 3 backup log files

FILE_HANDLER_NAME = "recollect.file"
CONSOLE_HANDLER_NAME = "recollect.console"
QUIET_LOGGERS = ("httpx", "httpcore", "sentence_transformers", "trafilatura")


def _find_handler(name: str) -> Optional[logging.Handler]:
    for handler in logging.getLogger().handlers:
        if handler.get_name() == name:
            return handler
    return None


def setup_logging() -> None:
    """Configure application-wide logging.

    Logs to both file (~/.recollect/data/recollect.log) and stderr.
    Log level controlled by RECOLLECT_LOG_LEVEL env var (default: INFO).

    Falls back to defaults if settings fail to load. Safe to call more
    than once: handlers installed by an earlier call are reused.
    """
    if _find_handler(CONSOLE_HANDLER_NAME) is not None:
        return

    try:
        settings = get_settings()
        log_file = settings.log_file
        log_level = settings.log_level
    except Exception as e:
        print(f"Warning: Failed to load settings for logging: {e}", file=sys.stderr)
        log_file = Path("data/recollect.log")
        log_level = "INFO"

    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_formatter = logging.Formatter("%(levelname)-8s | %(name)s | %(message)s")

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.set_name(FILE_HANDLER_NAME)
    file_handler.setFormatter(file_formatter)
    file_handler.setLevel(logging.DEBUG)  # File captures everything

    # Console handler (stderr) - WARNING+ so command output stays clean
    console_handler = logging.StreamHandler()
    console_handler.set_name(CONSOLE_HANDLER_NAME)
    console_handler.setFormatter(console_formatter)
    console_handler.setLevel(logging.WARNING)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level))
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # Quiet noisy third-party loggers
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def set_console_level(level: int) -> None:
    """Change what reaches stderr (used by `recollect --verbose`).

    The root level is lowered too when needed, so the console is never
    starved by a stricter RECOLLECT_LOG_LEVEL.
    """
    handler = _find_handler(CONSOLE_HANDLER_NAME)
    if handler is None:
        return
    handler.setLevel(level)
    root_logger = logging.getLogger()
    if root_logger.level > level:
        root_logger.setLevel(level)


def main() -> None:
    """Main entry point for the Recollect CLI."""
    setup_logging()
    app()


if __name__ == "__main__":
    main()
