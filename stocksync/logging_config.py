"""Application-wide logging configuration utilities."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from stocksync import app_paths

_LOG_PATH: Optional[Path] = None
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_CONSOLE_HANDLER_NAME = "stocksync-console"


def _add_console_handler(root_logger: logging.Logger) -> None:
    if any(handler.get_name() == _CONSOLE_HANDLER_NAME for handler in root_logger.handlers):
        return
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.set_name(_CONSOLE_HANDLER_NAME)
    stream_handler.setFormatter(logging.Formatter(_FORMAT))
    root_logger.addHandler(stream_handler)


def configure_logging(
    level: int = logging.INFO,
    *,
    log_path: Optional[Path] = None,
    console: bool = False,
) -> Path:
    """Configure logging to write to the StockSync log file.

    Parameters
    ----------
    level:
        The minimum logging level for the root logger. ``logging.INFO`` is used
        by default which captures sync cycles and mutations without logging
        every remote call.
    log_path:
        Optional override for the log file location.
    console:
        Also mirror records to ``stderr``. Used by the command line runner.

    Returns
    -------
    pathlib.Path
        The path to the log file.
    """

    global _LOG_PATH

    root_logger = logging.getLogger()
    if _LOG_PATH is not None:
        if console:
            _add_console_handler(root_logger)
        return _LOG_PATH

    path = log_path or app_paths.logs_path("stocksync.log")
    path.parent.mkdir(parents=True, exist_ok=True)

    if not root_logger.handlers:
        root_logger.setLevel(level)
    else:
        root_logger.setLevel(min(root_logger.level, level))

    already_configured = any(
        isinstance(handler, logging.FileHandler)
        and getattr(handler, "baseFilename", None) == str(path)
        for handler in root_logger.handlers
    )
    formatter = logging.Formatter(_FORMAT)
    if not already_configured:
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if console:
        _add_console_handler(root_logger)

    _LOG_PATH = path
    root_logger.debug("Logging configured. Writing to %s", path)
    return path


__all__ = ["configure_logging"]
