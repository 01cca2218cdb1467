from __future__ import annotations

import logging
from pathlib import Path

import pytest

from stocksync import logging_config


@pytest.fixture
def root_handlers(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(logging_config, "_LOG_PATH", None)
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    yield root
    for handler in root.handlers[:]:
        if handler not in before:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def _console_handlers(root: logging.Logger):
    return [handler for handler in root.handlers if handler.get_name() == "stocksync-console"]


def test_repeated_console_configuration_adds_one_handler(root_handlers, tmp_path: Path, monkeypatch) -> None:
    log_path = tmp_path / "stocksync.log"

    logging_config.configure_logging(log_path=log_path, console=True)
    logging_config.configure_logging(log_path=log_path, console=True)
    monkeypatch.setattr(logging_config, "_LOG_PATH", None)
    logging_config.configure_logging(log_path=log_path, console=True)

    file_handlers = [
        handler
        for handler in root_handlers.handlers
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == str(log_path)
    ]
    assert len(file_handlers) == 1
    assert len(_console_handlers(root_handlers)) == 1


def test_console_can_be_enabled_after_file_logging(root_handlers, tmp_path: Path) -> None:
    path = logging_config.configure_logging(log_path=tmp_path / "stocksync.log")
    assert _console_handlers(root_handlers) == []

    assert logging_config.configure_logging(console=True) == path
    assert len(_console_handlers(root_handlers)) == 1
