"""One-time encryption of plaintext secrets in device settings.

Each secret family has a companion boolean marker (``_<key>Encrypted``).
A family is migrated when it holds a value and its marker is absent; the
marker is set afterwards, so the routine does nothing on every later start.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from calendarplus.security.secrets import SecretCipher

logger = logging.getLogger(__name__)


def _encrypt_string(value: Any, cipher: SecretCipher) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected a string, got {type(value).__name__}")
    if cipher.is_encrypted(value):
        return value
    return cipher.encrypt(value)


def _encrypt_map(value: Any, cipher: SecretCipher) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise TypeError(f"expected an object, got {type(value).__name__}")
    return {
        name: _encrypt_string(secret, cipher) if isinstance(secret, str) and secret else secret
        for name, secret in value.items()
    }


def _encrypt_provider_list(value: Any, cipher: SecretCipher) -> list[Any]:
    if not isinstance(value, list):
        raise TypeError(f"expected a list, got {type(value).__name__}")
    migrated = []
    for entry in value:
        if isinstance(entry, dict) and isinstance(entry.get("credential"), str):
            entry = {**entry, "credential": _encrypt_string(entry["credential"], cipher)}
        migrated.append(entry)
    return migrated


@dataclass(frozen=True)
class SecretFamily:
    """A settings key holding secrets, and the marker recording its migration."""

    key: str
    marker: str
    encrypt: Callable[[Any, SecretCipher], Any]


SECRET_FAMILIES: tuple[SecretFamily, ...] = (
    SecretFamily("apiKey", "_apiKeyEncrypted", _encrypt_string),
    SecretFamily("apiKeys", "_apiKeysEncrypted", _encrypt_map),
    SecretFamily("githubToken", "_githubTokenEncrypted", _encrypt_string),
    SecretFamily("aiProviders", "_aiProvidersEncrypted", _encrypt_provider_list),
)


def family_for(key: str) -> SecretFamily:
    for family in SECRET_FAMILIES:
        if family.key == key:
            return family
    raise KeyError(key)


def migrate_secrets(document: dict[str, Any], cipher: SecretCipher) -> bool:
    """Encrypt unmigrated secret families of ``document`` in place.

    Families without a value are left unmarked so a value saved later is
    still picked up. When encryption is unavailable nothing is touched.

    Returns:
        True if the document changed and needs to be persisted
    """
    if not cipher.is_available:
        logger.debug("Secret encryption unavailable, skipping migration")
        return False

    changed = False
    for family in SECRET_FAMILIES:
        if document.get(family.marker):
            continue
        value = document.get(family.key)
        if not value:
            continue
        try:
            document[family.key] = family.encrypt(value, cipher)
        except (TypeError, ValueError) as e:
            logger.warning(f"Could not migrate '{family.key}' in device settings: {e}")
            continue
        document[family.marker] = True
        changed = True
        logger.info(f"Encrypted legacy plaintext '{family.key}'")

    return changed
