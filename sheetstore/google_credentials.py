"""Service account credentials for the Sheets API.

Keys come either from a JSON file under the credentials directory or, for
deployments that cannot ship files, from the JSON document held in
:data:`CREDENTIALS_ENV_VAR`.  Both sources go through the same checks, and
private keys pasted with literal ``\\n`` sequences are repaired.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

CREDENTIALS_ENV_VAR = "SHEETSTORE_SERVICE_ACCOUNT_JSON"

REQUIRED_FIELDS: Tuple[str, ...] = (
    "type",
    "project_id",
    "private_key_id",
    "private_key",
    "client_email",
    "client_id",
    "token_uri",
)


class CredentialsFileInvalidError(Exception):
    """The service account document is unreadable or incomplete."""


def _repair_private_key(key: str) -> str:
    lines = key.replace("\\n", "\n").splitlines()
    return "\n".join(line.rstrip("\r") for line in lines) + "\n"


def _decode(text: str, source: str) -> Dict[str, object]:
    body = text.lstrip("\ufeff").strip()
    if not body:
        raise CredentialsFileInvalidError(f"Service account JSON is empty ({source}).")
    try:
        document = json.loads(body)
    except json.JSONDecodeError as exc:
        raise CredentialsFileInvalidError(f"JSON parse error in {source}: {exc.msg}") from exc
    if not isinstance(document, Mapping):
        raise CredentialsFileInvalidError(f"Service account JSON in {source} must be an object.")
    return dict(document)


def _read(path: Path) -> Dict[str, object]:
    try:
        text = path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise CredentialsFileInvalidError(f"Could not read JSON file: {exc}") from exc
    return _decode(text, str(path))


def _checked(document: Dict[str, object]) -> Dict[str, object]:
    absent = {
        name
        for name in REQUIRED_FIELDS
        if not isinstance(document.get(name), str) or not str(document[name]).strip()
    }
    if document.get("type") != "service_account":
        absent.add("type")
    if absent:
        raise CredentialsFileInvalidError(f"JSON missing fields: {', '.join(sorted(absent))}")
    document["private_key"] = _repair_private_key(str(document["private_key"]))
    return document


def load_service_account_data(path: Path) -> Dict[str, object]:
    """Validated credentials from ``path``; the file is left as it is."""

    return _checked(_read(path))


def ensure_service_account_file(path: Path) -> Dict[str, object]:
    """Validate ``path`` and rewrite it with the repaired private key."""

    document = load_service_account_data(path)
    path.write_text(json.dumps(document, indent=2), encoding="utf-8")
    return document


def load_service_account_payload(path: Optional[Path] = None) -> Dict[str, object]:
    """Credentials from :data:`CREDENTIALS_ENV_VAR`, else from ``path``."""

    inline = os.environ.get(CREDENTIALS_ENV_VAR, "")
    if inline.strip():
        logger.debug("Using service account from %s", CREDENTIALS_ENV_VAR)
        return _checked(_decode(inline, CREDENTIALS_ENV_VAR))
    if path is None:
        raise CredentialsFileInvalidError(
            f"No credentials file configured and {CREDENTIALS_ENV_VAR} is not set."
        )
    if not path.exists():
        raise CredentialsFileInvalidError(f"Credentials file not found: {path}")
    return ensure_service_account_file(path)


__all__ = [
    "CREDENTIALS_ENV_VAR",
    "CredentialsFileInvalidError",
    "REQUIRED_FIELDS",
    "ensure_service_account_file",
    "load_service_account_data",
    "load_service_account_payload",
]
