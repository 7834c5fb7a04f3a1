"""At-rest encryption for secrets kept in device settings.

A stored secret is either a Fernet token (ciphertext) or, on installations
that predate encryption, the plaintext itself. Reading resolves the value into
one of two variants:

- :class:`EncryptedSecret` - the value decrypted with the device key
- :class:`LegacySecret` - the value did not decrypt and is taken as-is

so callers never need to know which generation of settings file they are
looking at.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cryptography.fernet import Fernet, InvalidToken

from calendarplus.security.key_manager import KeyManager, KeyManagerError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncryptedSecret:
    """A stored value that decrypted successfully."""

    token: str
    plaintext: str


@dataclass(frozen=True)
class LegacySecret:
    """A stored value that is not ciphertext; it is its own plaintext."""

    value: str

    @property
    def plaintext(self) -> str:
        return self.value


DecodedSecret = EncryptedSecret | LegacySecret


class SecretCipher:
    """Encrypts and decrypts individual secret strings.

    When no key is available (no keychain and key creation failed) the
    cipher is *unavailable*: ``encrypt`` returns its input unchanged and
    migration is skipped, matching platforms without OS-level encryption.

    Example:
        ```python
        cipher = SecretCipher.from_key_manager()
        token = cipher.encrypt("sk-live-123")
        cipher.decrypt(token)                   # "sk-live-123"
        cipher.decrypt("not-valid-ciphertext")  # "not-valid-ciphertext"
        ```
    """

    def __init__(self, key: bytes | None) -> None:
        self._fernet = Fernet(key) if key else None

    @classmethod
    def from_key_manager(
        cls, key_manager: KeyManager | None = None, key_id: int = 0
    ) -> SecretCipher:
        """Build a cipher from the OS key store, or an unavailable one."""
        try:
            manager = key_manager or KeyManager.create()
            return cls(manager.get_or_create_key(key_id))
        except KeyManagerError as e:
            logger.warning(f"Secret encryption unavailable, storing secrets as-is: {e}")
            return cls(None)

    @property
    def is_available(self) -> bool:
        return self._fernet is not None

    def encrypt(self, plaintext: str) -> str:
        """Return the ciphertext for ``plaintext`` (or ``plaintext`` if unavailable)."""
        if self._fernet is None or not plaintext:
            return plaintext
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decode(self, value: str) -> DecodedSecret:
        """Resolve a stored value into its encrypted or legacy variant."""
        if self._fernet is None or not value:
            return LegacySecret(value)
        try:
            raw = self._fernet.decrypt(value.encode("utf-8"))
            return EncryptedSecret(token=value, plaintext=raw.decode("utf-8"))
        except (InvalidToken, ValueError):
            return LegacySecret(value)

    def decrypt(self, value: str) -> str:
        """Plaintext of a stored value. Never raises for non-ciphertext input."""
        return self.decode(value).plaintext

    def is_encrypted(self, value: str) -> bool:
        return isinstance(self.decode(value), EncryptedSecret)
