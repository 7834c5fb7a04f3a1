"""Encryption key management for secrets stored in device settings.

Keys come from one of:
1. Environment variables (explicit configuration, containers/CI)
2. OS keychain (preferred) - macOS Keychain, Windows Credential Locker,
   Linux Secret Service
3. Machine-derived keys (last resort, deterministic per machine)

The key never lands in the settings file itself; only ciphertext does.
"""

from __future__ import annotations

import hashlib
import logging
import os
import uuid
from abc import ABC, abstractmethod
from base64 import urlsafe_b64encode
from pathlib import Path

import keyring
import keyring.errors
from cryptography.fernet import Fernet
from keyring.backends import fail

from calendarplus.storage.errors import StorageError

logger = logging.getLogger(__name__)

ENV_KEY_PREFIX = "CALENDARPLUS_ENCRYPTION_KEY"


class KeyManagerError(StorageError):
    """Base exception for key management errors."""


class KeyNotFoundError(KeyManagerError):
    """Raised when encryption key cannot be found or stored."""


class KeyBackend(ABC):
    """Abstract base class for key storage backends."""

    name = "abstract"

    @abstractmethod
    def get_key(self, key_id: int) -> bytes | None:
        """Return the Fernet key for ``key_id``, or None if not stored."""

    @abstractmethod
    def set_key(self, key_id: int, key: bytes) -> None:
        """Store the Fernet key for ``key_id``."""


class KeyringBackend(KeyBackend):
    """OS keychain-based key storage."""

    name = "keyring"
    SERVICE_NAME = "calendarplus-secrets"

    def __init__(self) -> None:
        if not keyring_available():
            raise KeyManagerError("No usable OS keychain backend")

    def _key_name(self, key_id: int) -> str:
        return f"settings-key-{key_id}"

    def get_key(self, key_id: int) -> bytes | None:
        try:
            key_str = keyring.get_password(self.SERVICE_NAME, self._key_name(key_id))
        except keyring.errors.KeyringError as e:
            raise KeyManagerError(f"Failed to retrieve key from keyring: {e}") from e
        # Fernet keys are already base64-encoded
        return key_str.encode("ascii") if key_str is not None else None

    def set_key(self, key_id: int, key: bytes) -> None:
        try:
            keyring.set_password(
                self.SERVICE_NAME, self._key_name(key_id), key.decode("ascii")
            )
        except keyring.errors.KeyringError as e:
            raise KeyManagerError(f"Failed to store key in keyring: {e}") from e


class EnvironmentBackend(KeyBackend):
    """Keys read from ``CALENDARPLUS_ENCRYPTION_KEY_<id>`` variables."""

    name = "environment"

    def _env_var_name(self, key_id: int) -> str:
        return f"{ENV_KEY_PREFIX}_{key_id}"

    def get_key(self, key_id: int) -> bytes | None:
        value = os.environ.get(self._env_var_name(key_id))
        return value.encode("ascii") if value is not None else None

    def set_key(self, key_id: int, key: bytes) -> None:
        """Store in the environment of the current process only."""
        os.environ[self._env_var_name(key_id)] = key.decode("ascii")


class MachineKeyBackend(KeyBackend):
    """Key derived from the machine identifier.

    Deterministic and machine-tied: ciphertext moved to another machine
    cannot be decrypted there, which is acceptable for device settings.
    """

    name = "machine"
    SALT = b"calendarplus-device-settings-v1"

    def _machine_id(self) -> int:
        machine_id = uuid.getnode()  # MAC address as fallback
        try:
            machine_id_file = Path("/etc/machine-id")
            if machine_id_file.exists():
                machine_id = int(machine_id_file.read_text().strip(), 16)
        except (OSError, ValueError):
            pass
        return machine_id

    def get_key(self, key_id: int) -> bytes | None:
        key_material = f"{self._machine_id()}:{key_id}".encode() + self.SALT
        return urlsafe_b64encode(hashlib.sha256(key_material).digest())

    def set_key(self, key_id: int, key: bytes) -> None:
        """No-op: keys are derived, not stored."""


def keyring_available() -> bool:
    """Whether keyring resolved to a real OS backend (not the fail backend)."""
    try:
        backend = keyring.get_keyring()
    except keyring.errors.KeyringError:
        return False
    return not isinstance(backend, fail.Keyring)


class KeyManager:
    """Centralized encryption key management.

    Example:
        ```python
        km = KeyManager.create()          # env > keyring > machine
        key = km.get_or_create_key(0)

        os.environ["CALENDARPLUS_ENCRYPTION_KEY_0"] = Fernet.generate_key().decode()
        km = KeyManager.create(backend_type="environment")
        ```
    """

    def __init__(self, backend: KeyBackend) -> None:
        self._backend = backend

    @property
    def backend_name(self) -> str:
        return self._backend.name

    @classmethod
    def create(cls, backend_type: str = "auto") -> KeyManager:
        """Create a key manager.

        Args:
            backend_type: "auto", "keyring", "environment" or "machine"

        Raises:
            KeyManagerError: If the backend cannot be initialized
        """
        if backend_type == "auto":
            if any(k.startswith(f"{ENV_KEY_PREFIX}_") for k in os.environ):
                return cls(EnvironmentBackend())
            if keyring_available():
                return cls(KeyringBackend())
            logger.warning("No OS keychain available, using machine-derived key")
            return cls(MachineKeyBackend())

        if backend_type == "keyring":
            backend: KeyBackend = KeyringBackend()
        elif backend_type == "environment":
            backend = EnvironmentBackend()
        elif backend_type == "machine":
            backend = MachineKeyBackend()
        else:
            raise KeyManagerError(f"Unknown backend type: {backend_type}")
        return cls(backend)

    def get_key(self, key_id: int = 0) -> bytes | None:
        return self._backend.get_key(key_id)

    def get_or_create_key(self, key_id: int = 0) -> bytes:
        """Get existing key or generate and store a new one.

        Raises:
            KeyNotFoundError: If a new key cannot be stored
        """
        key = self.get_key(key_id)
        if key is not None:
            return key

        key = Fernet.generate_key()
        try:
            self._backend.set_key(key_id, key)
        except KeyManagerError as e:
            raise KeyNotFoundError(f"Failed to store new key: {e}") from e
        logger.info(f"Generated settings encryption key {key_id} ({self.backend_name})")
        return key
