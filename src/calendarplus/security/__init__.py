"""Security module for CalendarPlus.

Provides encryption key management and at-rest encryption of secrets.
"""

from calendarplus.security.key_manager import (
    EnvironmentBackend,
    KeyBackend,
    KeyManager,
    KeyManagerError,
    KeyNotFoundError,
    KeyringBackend,
    MachineKeyBackend,
    keyring_available,
)
from calendarplus.security.secrets import (
    DecodedSecret,
    EncryptedSecret,
    LegacySecret,
    SecretCipher,
)

__all__ = [
    # Key Management
    "KeyManager",
    "KeyManagerError",
    "KeyNotFoundError",
    "KeyBackend",
    "KeyringBackend",
    "EnvironmentBackend",
    "MachineKeyBackend",
    "keyring_available",
    # Secrets
    "SecretCipher",
    "DecodedSecret",
    "EncryptedSecret",
    "LegacySecret",
]
