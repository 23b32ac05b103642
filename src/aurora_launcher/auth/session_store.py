"""Local persistence of the credential bundle.

The session file is a small YAML document with a single top-level ``auth``
block::

    auth:
      access_token: "..."
      refresh_token: "..."
      username: "Steve"
      uuid: "..."
      xuid: "..."
      client_id: "00000000441cc96b"
      expires_at: 1767225600

Older files were written without escaping, so every string read back is
stripped of stray ``"`` characters.  Writes go through a temporary file and
``os.replace`` so a reader never observes a half-written bundle.
"""

from __future__ import annotations

import logging
import os
import pathlib
import tempfile
from typing import Any

import yaml

from aurora_launcher.auth.session import CredentialBundle

logger = logging.getLogger(__name__)

_STRING_FIELDS = ("access_token", "refresh_token", "username", "uuid", "xuid", "client_id")


class SessionStoreError(Exception):
    """Raised when the session file cannot be written or a bundle is incomplete."""


class SessionStore:
    """Reads and writes the credential bundle at *path*."""

    def __init__(self, path: str | pathlib.Path) -> None:
        self._path = pathlib.Path(path)

    @property
    def path(self) -> pathlib.Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def load(self) -> CredentialBundle | None:
        """Return the stored bundle, or ``None`` if there is no usable file.

        Missing string fields come back empty, and a bundle with any empty
        field or a missing ``expires_at`` comes back with ``expires_at=0``
        (already expired); the session manager then refreshes or signs in.
        """
        if not self._path.exists():
            logger.info("No session file at %s", self._path)
            return None

        try:
            with open(self._path, encoding="utf-8") as fh:
                data = yaml.safe_load(fh)
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Ignoring unreadable session file %s: %s", self._path, exc)
            return None

        block = data.get("auth") if isinstance(data, dict) else None
        if not isinstance(block, dict):
            logger.warning("Session file %s has no 'auth' block; ignoring it", self._path)
            return None

        values = {name: _clean(block.get(name)) for name in _STRING_FIELDS}
        expires_at = _parse_expiry(block.get("expires_at"))
        blank = [name for name in _STRING_FIELDS if not values[name]]
        if blank and expires_at:
            logger.warning("Session file %s has empty fields %s; treating session as expired", self._path, blank)
            expires_at = 0
        return CredentialBundle(
            access_token=values["access_token"],
            refresh_token=values["refresh_token"],
            username=values["username"],
            account_id=values["uuid"],
            xuid=values["xuid"],
            client_id=values["client_id"],
            expires_at=expires_at,
        )

    def save(self, bundle: CredentialBundle) -> None:
        """Replace the stored bundle with *bundle* in a single rename.

        Raises ``SessionStoreError`` if any field is empty or the write fails.
        """
        document = {
            "auth": {
                "access_token": bundle.access_token,
                "refresh_token": bundle.refresh_token,
                "username": bundle.username,
                "uuid": bundle.account_id,
                "xuid": bundle.xuid,
                "client_id": bundle.client_id,
                "expires_at": int(bundle.expires_at),
            }
        }
        empty = [name for name in _STRING_FIELDS if not str(document["auth"][name]).strip()]
        if empty:
            raise SessionStoreError(f"Refusing to persist a bundle with empty fields: {empty}")

        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".session-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                yaml.safe_dump(document, fh, default_flow_style=False, sort_keys=False)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self._path)
        except OSError as exc:
            pathlib.Path(tmp_name).unlink(missing_ok=True)
            raise SessionStoreError(f"Could not write session file {self._path}: {exc}") from exc

        logger.info("Session written for %s (expires_at=%d)", bundle.username, bundle.expires_at)


# -- private helpers ---------------------------------------------------------

def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).replace('"', "").strip()


def _parse_expiry(value: Any) -> int:
    try:
        return int(_clean(value) or 0)
    except ValueError:
        logger.warning("Unparseable expires_at %r; treating session as expired", value)
        return 0
