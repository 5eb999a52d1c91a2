"""
CredentialStore: best-effort persistence of the session between runs.

Every failure path degrades to "no session available" on read and to a log
line on write. A credential exchange that succeeded over the network is
never turned into an error by the local filesystem.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from moynalog.models.schemas import SavedTokens
from moynalog.services.encryption import EncryptionService

logger = logging.getLogger(__name__)

_AAD = "moynalog-session-v1"


class CredentialStore:
    """Reads and writes the persisted credential record at ``path``."""

    def __init__(
        self,
        path: Union[str, Path] = "session-token.json",
        *,
        enabled: bool = False,
        secret: Optional[str] = None,
    ) -> None:
        self._path = Path(path)
        self._enabled = enabled
        self._encryption = EncryptionService(secret) if secret else None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def path(self) -> Path:
        return self._path.resolve()

    def load(self) -> Optional[SavedTokens]:
        """Return the saved record, or None if there is no usable one."""
        if not self._enabled or not self._path.is_file():
            return None

        try:
            text = self._path.read_text(encoding="utf-8")
            if self._encryption:
                raw = self._encryption.decrypt(text.strip(), aad=_AAD)
            else:
                raw = json.loads(text)
            record = SavedTokens.model_validate(raw)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("[Nalog] Ignoring unreadable session file %s: %s", self.path, exc)
            return None

        if not record.refresh_token:
            logger.debug("[Nalog] Session file %s has no refresh token", self.path)
            return None
        return record

    def save(self, record: SavedTokens) -> bool:
        """Overwrite the file with ``record``. Returns False on I/O failure."""
        if not self._enabled:
            return False

        if self._encryption:
            content = self._encryption.encrypt(record.as_dict(), aad=_AAD)
        else:
            content = json.dumps(record.as_dict(), ensure_ascii=False, indent=2)

        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(content, encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError:
            tmp.unlink(missing_ok=True)
            logger.exception("[Nalog] Failed to save tokens to %s", self.path)
            return False

        logger.debug("[Nalog] Session saved to %s", self.path)
        return True

    def clear(self) -> None:
        """Remove the saved record; a missing file is not an error."""
        if not self._enabled:
            return
        try:
            self._path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.debug("[Nalog] Could not remove %s: %s", self.path, exc)
