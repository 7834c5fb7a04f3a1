"""Device-local and global settings with at-rest secret encryption."""

from calendarplus.settings.migration import SECRET_FAMILIES, SecretFamily, migrate_secrets
from calendarplus.settings.store import (
    DeviceSettingsStore,
    GlobalSettingsStore,
    SettingsDocument,
)

__all__ = [
    "SettingsDocument",
    "DeviceSettingsStore",
    "GlobalSettingsStore",
    "SECRET_FAMILIES",
    "SecretFamily",
    "migrate_secrets",
]
