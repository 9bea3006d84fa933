from __future__ import annotations

import io
import logging as py_logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import panenexus.logging as pnx_logging


def test_default_log_path_is_expanded() -> None:
    path = pnx_logging.default_log_path()

    assert path.is_absolute()
    assert path.name == "panenexus.log"


def test_warning_alias_maps_to_warning_level() -> None:
    logger = pnx_logging.configure_logging("warning")

    assert logger.level == pnx_logging.LOG_LEVELS["WARN"]


def test_unknown_log_level_falls_back_to_info() -> None:
    logger = pnx_logging.configure_logging("not-a-level")

    assert logger.level == py_logging.INFO


def test_configure_logging_resets_existing_handlers() -> None:
    logger = pnx_logging.configure_logging("INFO")
    assert len(logger.handlers) == 1

    logger = pnx_logging.configure_logging("INFO")

    assert len(logger.handlers) == 1


def test_stream_handler_respects_level_while_file_records_debug(tmp_path: Path) -> None:
    stream = io.StringIO()
    log_file = tmp_path / "logs" / "panenexus.log"

    logger = pnx_logging.configure_logging("ERROR", stream, log_file=log_file)
    py_logging.getLogger("panenexus.terminal.pty_backend").debug("pty-spawn process=pty-1")
    for handler in logger.handlers:
        handler.flush()

    file_handlers = [handler for handler in logger.handlers if isinstance(handler, RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert file_handlers[0].level == py_logging.DEBUG
    assert stream.getvalue() == ""
    assert "pty-spawn process=pty-1" in log_file.read_text(encoding="utf-8")


def test_configure_logging_ignores_file_handler_oserror(monkeypatch, tmp_path: Path) -> None:
    def raise_os_error(*args: object, **kwargs: object) -> py_logging.Handler:
        raise OSError("disk full")

    monkeypatch.setattr(pnx_logging, "RotatingFileHandler", raise_os_error)

    logger = pnx_logging.configure_logging("INFO", log_file=tmp_path / "nope" / "panenexus.log")

    assert len(logger.handlers) == 1
    assert type(logger.handlers[0]) is py_logging.StreamHandler
    assert logger.level == py_logging.INFO
