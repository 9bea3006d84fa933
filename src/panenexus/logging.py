"""Application logging helpers."""

from __future__ import annotations

import logging as py_logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TextIO

LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "WARNING": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
ROOT_LOGGER_NAME = "panenexus"
DEFAULT_LOG_PATH = Path("~/.config/panenexus/logs/panenexus.log")
_FALLBACK_LOG_PATH = Path(".panenexus/logs/panenexus.log")
_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d %(message)s"
_MAX_LOG_BYTES = 2 * 1024 * 1024
_LOG_BACKUPS = 3


def resolve_level(level: str) -> int:
    normalized = level.strip().upper()
    if normalized == "WARNING":
        normalized = "WARN"
    return LOG_LEVELS.get(normalized, py_logging.INFO)


def default_log_path() -> Path:
    try:
        resolved = DEFAULT_LOG_PATH.expanduser()
    except RuntimeError:
        resolved = (Path.cwd() / _FALLBACK_LOG_PATH).resolve()
    else:
        if not resolved.is_absolute():
            resolved = resolved.resolve()
    return resolved


def _open_file_handler(log_file: str | Path) -> py_logging.Handler | None:
    try:
        log_path = Path(log_file).expanduser()
    except RuntimeError:
        log_path = Path(log_file)
    if not log_path.is_absolute():
        log_path = log_path.resolve()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            log_path,
            maxBytes=_MAX_LOG_BYTES,
            backupCount=_LOG_BACKUPS,
            encoding="utf-8",
        )
    except OSError:
        return None


def configure_logging(
    level: str = "INFO",
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    """Route the ``panenexus`` logger tree to stderr and an optional rotating file.

    The stream handler honours ``level``; the file handler always records
    DEBUG so PTY lifecycle traces survive a quiet console.
    """
    resolved = resolve_level(level)
    logger = py_logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(py_logging.DEBUG if log_file else resolved)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    formatter = py_logging.Formatter(_FORMAT)

    handler = py_logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(resolved)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    if log_file:
        file_handler = _open_file_handler(log_file)
        if file_handler is None:
            logger.setLevel(resolved)
        else:
            file_handler.setLevel(py_logging.DEBUG)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    logger.propagate = False
    return logger
