"""Centralised helpers for managing StockSync application directories."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

_APP_ENV_VARS: Iterable[str] = ("STOCKSYNC_HOME", "LOCALAPPDATA", "APPDATA")


def _detect_base_directory() -> Path:
    for env_var in _APP_ENV_VARS:
        value = os.environ.get(env_var)
        if not value:
            continue
        base = Path(value).expanduser().resolve()
        if env_var == "STOCKSYNC_HOME":
            return base
        return base / "StockSync"
    return Path.home().resolve() / ".stocksync"


APP_DIR: Path = _detect_base_directory()
LOG_DIR: Path = APP_DIR / "logs"
DATA_DIR: Path = APP_DIR / "data"
CREDENTIALS_DIR: Path = APP_DIR / "credentials"


def ensure_directory(path: Path) -> Path:
    """Ensure that ``path`` exists, returning the :class:`~pathlib.Path`."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def ensure_app_structure() -> None:
    """Create the base directories required for application data."""

    for directory in (APP_DIR, LOG_DIR, DATA_DIR, CREDENTIALS_DIR):
        ensure_directory(directory)


def data_path(*parts: str) -> Path:
    """Return a path rooted inside :data:`DATA_DIR`, creating parent directories."""

    ensure_app_structure()
    target = DATA_DIR.joinpath(*parts)
    if target.parent and not target.parent.exists():
        target.parent.mkdir(parents=True, exist_ok=True)
    return target


def logs_path(*parts: str) -> Path:
    """Return a path rooted inside :data:`LOG_DIR`."""

    ensure_app_structure()
    return LOG_DIR.joinpath(*parts)


def credentials_path(*parts: str) -> Path:
    """Return a path rooted inside :data:`CREDENTIALS_DIR`."""

    ensure_app_structure()
    return CREDENTIALS_DIR.joinpath(*parts)


__all__ = [
    "APP_DIR",
    "LOG_DIR",
    "DATA_DIR",
    "CREDENTIALS_DIR",
    "credentials_path",
    "data_path",
    "ensure_app_structure",
    "ensure_directory",
    "logs_path",
]
