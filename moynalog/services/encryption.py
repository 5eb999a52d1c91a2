"""
EncryptionService: AES-256-GCM sealing of the persisted session record.

Encryption format:
    Base64( IV[12 bytes] || Ciphertext || Auth-Tag[16 bytes] )

Key derivation:
    key = SHA-256(secret)  ->  32-byte AES-256 key

AAD (Additional Authenticated Data):
    caller-supplied context string (the store passes its format tag).
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import json
import os
from typing import Any, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_IV_LENGTH = 12


class EncryptionError(ValueError):
    """The sealed payload is malformed or was produced with another key."""


class EncryptionService:
    """
    Provides AES-256-GCM encryption for the on-disk token record.

    Usage::

        svc = EncryptionService(secret="local-passphrase")
        sealed = svc.encrypt({"refreshToken": "..."})
        record = svc.decrypt(sealed)
    """

    def __init__(self, secret: str) -> None:
        self._key: bytes = hashlib.sha256(secret.encode("utf-8")).digest()

    def encrypt(self, obj: Dict[str, Any], aad: str = "") -> str:
        """
        Encrypt a JSON object and return ``Base64(IV || ciphertext || tag)``.
        """
        iv: bytes = os.urandom(_IV_LENGTH)
        plaintext: bytes = json.dumps(obj, separators=(",", ":")).encode("utf-8")

        # cryptography appends the 16-byte auth tag to the ciphertext
        ciphertext_with_tag: bytes = AESGCM(self._key).encrypt(iv, plaintext, aad.encode("utf-8"))
        return base64.b64encode(iv + ciphertext_with_tag).decode("utf-8")

    def decrypt(self, sealed: str, aad: str = "") -> Dict[str, Any]:
        """
        Reverse :meth:`encrypt`.

        Raises:
            EncryptionError: If the payload is not valid Base64, is truncated,
                fails authentication, or does not hold a JSON object.
        """
        try:
            raw = base64.b64decode(sealed, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise EncryptionError("payload is not valid base64") from exc

        if len(raw) <= _IV_LENGTH:
            raise EncryptionError("payload is truncated")

        iv, ciphertext_with_tag = raw[:_IV_LENGTH], raw[_IV_LENGTH:]
        try:
            plaintext = AESGCM(self._key).decrypt(iv, ciphertext_with_tag, aad.encode("utf-8"))
        except InvalidTag as exc:
            raise EncryptionError("payload failed authentication") from exc

        obj = json.loads(plaintext)
        if not isinstance(obj, dict):
            raise EncryptionError("payload does not hold a JSON object")
        return obj
