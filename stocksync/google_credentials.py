"""Service account files used to reach the inventory spreadsheets.

Files downloaded from the Cloud console are often re-saved by hand before they
reach the warehouse machines: a BOM gets prepended, line endings change, or
the PEM key ends up with literal ``\\n`` sequences.  :func:`read_service_account`
accepts all of those and returns a :class:`ServiceAccount` whose ``info`` can
be passed straight to ``Credentials.from_service_account_info``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: Tuple[str, ...] = (
    "type",
    "project_id",
    "private_key_id",
    "private_key",
    "client_email",
    "client_id",
    "token_uri",
)


class InvalidServiceAccountFile(Exception):
    """Raised when a service account file cannot be used for Sheets access."""


@dataclass(frozen=True)
class ServiceAccount:
    path: Path
    info: Dict[str, Any] = field(repr=False)

    @property
    def client_email(self) -> str:
        return str(self.info["client_email"])

    @property
    def project_id(self) -> str:
        return str(self.info["project_id"])


def _fix_private_key(key: str) -> str:
    key = key.replace("\\n", "\n").replace("\r\n", "\n").replace("\r", "\n")
    return key if key.endswith("\n") else key + "\n"


def _parse(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise InvalidServiceAccountFile(f"Credentials file could not be read: {exc}") from exc

    text = text.lstrip("\ufeff").strip()
    if not text:
        raise InvalidServiceAccountFile("Service account JSON is empty.")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidServiceAccountFile(f"JSON parse error: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise InvalidServiceAccountFile("Service account JSON must be an object.")
    return payload


def read_service_account(path: Path) -> ServiceAccount:
    """Load and validate ``path`` without touching the file."""

    path = Path(path)
    info = _parse(path)
    problems: List[str] = [
        name for name in REQUIRED_FIELDS if not isinstance(info.get(name), str) or not info[name].strip()
    ]
    if info.get("type") != "service_account" and "type" not in problems:
        problems.append("type")
    if problems:
        raise InvalidServiceAccountFile(f"JSON missing fields: {', '.join(sorted(problems))}")

    info["private_key"] = _fix_private_key(info["private_key"])
    return ServiceAccount(path=path, info=info)


def normalise_service_account_file(path: Path) -> ServiceAccount:
    """Validate ``path`` and rewrite it with the repaired private key."""

    account = read_service_account(path)
    account.path.write_text(json.dumps(account.info, indent=2), encoding="utf-8")
    logger.info("Normalised service account file for %s", account.client_email)
    return account


__all__ = [
    "InvalidServiceAccountFile",
    "REQUIRED_FIELDS",
    "ServiceAccount",
    "normalise_service_account_file",
    "read_service_account",
]
