"""
Server-side secret handling for opaque record references.

One Fernet key serves two purposes:
- symmetric encryption of the ``salt:id`` pair embedded in a reference
- keying the HMAC-SHA256 that binds a reference to a record's content
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets

from cryptography.fernet import Fernet, InvalidToken

from labhazards.config import settings
from labhazards.errors import DecodeError

logger = logging.getLogger(__name__)


def generate_salt() -> str:
    """Return a fresh 128-bit salt, hex encoded."""
    return secrets.token_hex(16)


class EncryptionService:
    """Wraps Fernet encryption and keyed content signatures."""

    def __init__(self, key: str | bytes | None = None):
        raw_key = key or settings.LHD_ENCRYPTION_KEY
        if raw_key:
            self._key = raw_key.encode() if isinstance(raw_key, str) else raw_key
        else:
            # Outstanding references die with the process when the key is
            # generated here; production sets LHD_ENCRYPTION_KEY.
            logger.warning("LHD_ENCRYPTION_KEY not set, generating a process-local key")
            self._key = Fernet.generate_key()
        self._fernet = Fernet(self._key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string and return the URL-safe base64 token."""
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a token produced by :meth:`encrypt`."""
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except (InvalidToken, UnicodeDecodeError) as exc:
            raise DecodeError("Bad decrypted request") from exc

    def sign(self, message: str, salt: str) -> str:
        """HMAC-SHA256 of ``message || salt`` under the server key, hex encoded."""
        return hmac.new(self._key, (message + salt).encode(), hashlib.sha256).hexdigest()

    def verify(self, message: str, salt: str, signature: str) -> bool:
        return hmac.compare_digest(self.sign(message, salt), signature)
