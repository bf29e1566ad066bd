"""Structured logging configuration with file rotation."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAIN_LOG_NAME = "quillstore.log"
VERSIONS_LOG_NAME = "versions.log"
VERSIONS_LOGGER = "chapters.versions"

_MAX_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 5


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        str(path), maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    level: int = logging.INFO,
    log_dir: Optional[str | Path] = None,
    console_enabled: bool = True,
) -> None:
    """Configure application-wide logging.

    The root logger gets an optional console handler and a rotating
    ``quillstore.log``. Revision chain activity additionally goes to its own
    ``versions.log`` at DEBUG, so a corrupt chain can be traced back to the
    appends that produced it.

    Args:
        level: Logging level for the console and the main log file.
        log_dir: Directory for log files. Defaults to ./data/logs.
        console_enabled: Whether to output to the console.
    """
    log_dir = Path(log_dir or "./data/logs")
    log_dir.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    # Re-running setup replaces handlers instead of stacking duplicates
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    if console_enabled:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)
    root_logger.addHandler(_rotating_handler(log_dir / MAIN_LOG_NAME, level, formatter))

    versions_logger = logging.getLogger(VERSIONS_LOGGER)
    versions_logger.setLevel(logging.DEBUG)
    for handler in list(versions_logger.handlers):
        versions_logger.removeHandler(handler)
        handler.close()
    versions_logger.addHandler(_rotating_handler(log_dir / VERSIONS_LOG_NAME, logging.DEBUG, formatter))

    logging.getLogger(__name__).debug("Logging initialized: level=%s, dir=%s", level, log_dir)
