"""Credential Store - Per-session authentication material on disk.

Layout: <base_dir>/<session-key>/creds.json

The content is owned by the transport and treated as an opaque JSON object.
Writes go through a temporary file and an atomic rename so a crash never
leaves a half-written file behind.
"""

from __future__ import annotations

import hashlib
import json
import os
import re
import shutil
from pathlib import Path
from typing import Any

from botbridge.observability.logging import get_logger

logger = get_logger(__name__)

CREDENTIALS_FILE = "creds.json"

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9._-]{0,127}$")


def session_key(session_id: str) -> str:
    """Directory name for a session id.

    Ids that are not plain file names are hashed so an externally supplied
    id can never address a path outside the store.
    """
    if _SAFE_KEY.match(session_id):
        return session_id
    return "sha256-" + hashlib.sha256(session_id.encode("utf-8")).hexdigest()


class CredentialStore:
    """File-backed credential storage keyed by session id.

    Usage:
        store = CredentialStore("sessions")
        creds = store.load("s1")          # None on first pairing
        store.save("s1", {"me": {...}})
        store.clear("s1")                 # after logout
    """

    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        """Root directory of the store."""
        return self._base_dir

    def path_for(self, session_id: str) -> Path:
        """Credential file path for a session."""
        return self._base_dir / session_key(session_id) / CREDENTIALS_FILE

    def load(self, session_id: str) -> dict[str, Any] | None:
        """Read stored credentials.

        Returns:
            Credential object, or None if absent or unreadable
        """
        path = self.path_for(session_id)
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(
                "credentials_unreadable",
                session_id=session_id,
                path=str(path),
                error=str(e),
            )
            return None

        if not isinstance(data, dict):
            logger.warning("credentials_malformed", session_id=session_id, path=str(path))
            return None
        return data

    def save(self, session_id: str, credentials: dict[str, Any]) -> Path:
        """Replace stored credentials atomically."""
        path = self.path_for(session_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = path.with_suffix(".json.tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(credentials, f)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, path)

        logger.debug("credentials_saved", session_id=session_id)
        return path

    def clear(self, session_id: str) -> bool:
        """Delete a session's stored material.

        Returns:
            True if anything was removed
        """
        directory = self.path_for(session_id).parent
        if not directory.exists():
            return False
        shutil.rmtree(directory)
        logger.info("credentials_cleared", session_id=session_id)
        return True

    def exists(self, session_id: str) -> bool:
        """Whether credentials are stored for a session."""
        return self.path_for(session_id).is_file()
