"""Device-local and global settings documents.

Both are small JSON key/value files held in memory after ``open()`` and
written back in full, atomically, after every mutation. Load and save
problems are logged and never fatal: a missing or unreadable file means
defaults, and a failed save leaves the previous file in place. A file that
failed to load is only replaced once something is actually changed.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from pathlib import Path
from types import TracebackType
from typing import Any

from pydantic import ValidationError

from calendarplus.models import ProviderConfig, ProviderKind
from calendarplus.security.secrets import SecretCipher
from calendarplus.settings.migration import family_for, migrate_secrets
from calendarplus.storage.errors import StorageError, StorageNotFoundError
from calendarplus.storage.file import FileStorage
from calendarplus.storage.helpers import load_json, save_json

logger = logging.getLogger(__name__)


class SettingsDocument:
    """A JSON settings file with an explicit open/mutate/close lifecycle.

    Example:
        ```python
        with SettingsDocument(path).open() as doc:
            doc.set("theme", "dark")
        ```
    """

    def __init__(self, path: Path, storage: FileStorage | None = None) -> None:
        self._path = Path(path)
        self._storage = storage or FileStorage()
        self._data: dict[str, Any] = {}
        self._opened = False
        self._dirty = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._opened

    @property
    def is_dirty(self) -> bool:
        """Whether the in-memory document has changes not yet on disk."""
        return self._dirty

    def open(self) -> SettingsDocument:
        """Load the document from disk (empty if missing or unreadable)."""
        self._data = self._load()
        self._opened = True
        self._dirty = False
        logger.debug(f"Opened settings {self._path} ({len(self._data)} keys)")
        return self

    def _load(self) -> dict[str, Any]:
        try:
            data = load_json(self._path, storage=self._storage)
        except StorageNotFoundError:
            return {}
        except StorageError as e:
            logger.warning(f"Failed to load settings {self._path}, using defaults: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Settings {self._path} is not a JSON object, using defaults")
            return {}
        return data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of the in-memory document."""
        return copy.deepcopy(self._data)

    def set(self, key: str, value: Any) -> bool:
        self._data[key] = value
        return self.flush()

    def update(self, values: Mapping[str, Any]) -> bool:
        """Set several keys with a single write."""
        self._data.update(values)
        return self.flush()

    def delete(self, key: str) -> bool:
        if key not in self._data:
            return True
        del self._data[key]
        return self.flush()

    def flush(self) -> bool:
        """Write the full in-memory document to disk.

        Returns:
            False if the write failed (the previous file is intact)
        """
        try:
            save_json(self._path, self._data, storage=self._storage)
        except StorageError as e:
            logger.error(f"Failed to save settings {self._path}: {e}")
            self._dirty = True
            return False
        self._dirty = False
        return True

    def close(self) -> bool:
        """Write pending changes, if any, and close.

        An unchanged document is never rewritten, so a file that could not
        be loaded keeps its bytes.
        """
        saved = self.flush() if self._opened and self._dirty else True
        self._opened = False
        return saved

    def __enter__(self) -> SettingsDocument:
        if not self._opened:
            self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class DeviceSettingsStore(SettingsDocument):
    """Machine-local settings: secrets, hotkeys, UI preferences.

    Secrets are returned decrypted and stored encrypted. Opening the store
    migrates any legacy plaintext secrets (once; see
    :func:`~calendarplus.settings.migration.migrate_secrets`).
    """

    API_KEY = "apiKey"
    API_KEYS = "apiKeys"
    GITHUB_TOKEN = "githubToken"
    AI_PROVIDERS = "aiProviders"

    def __init__(
        self,
        path: Path,
        cipher: SecretCipher,
        storage: FileStorage | None = None,
    ) -> None:
        super().__init__(path, storage)
        self._cipher = cipher

    @property
    def cipher(self) -> SecretCipher:
        return self._cipher

    def open(self) -> DeviceSettingsStore:
        super().open()
        if migrate_secrets(self._data, self._cipher):
            self.flush()
        return self

    # Secrets

    def _get_secret(self, key: str) -> str:
        value = self._data.get(key)
        if not isinstance(value, str):
            return ""
        return self._cipher.decrypt(value)

    def _mark(self, key: str) -> None:
        if self._cipher.is_available:
            self._data[family_for(key).marker] = True

    def _set_secret(self, key: str, value: str) -> bool:
        value = (value or "").strip()
        self._data[key] = self._cipher.encrypt(value)
        self._mark(key)
        return self.flush()

    def get_api_key(self) -> str:
        return self._get_secret(self.API_KEY)

    def set_api_key(self, key: str) -> bool:
        return self._set_secret(self.API_KEY, key)

    def get_github_token(self) -> str:
        return self._get_secret(self.GITHUB_TOKEN)

    def set_github_token(self, token: str) -> bool:
        return self._set_secret(self.GITHUB_TOKEN, token)

    def get_api_keys(self) -> dict[str, str]:
        """Per-backend API keys, decrypted."""
        stored = self._data.get(self.API_KEYS)
        if not isinstance(stored, dict):
            return {}
        return {
            name: self._cipher.decrypt(value)
            for name, value in stored.items()
            if isinstance(value, str)
        }

    def set_backend_api_key(self, kind: ProviderKind, key: str) -> bool:
        stored = self._data.get(self.API_KEYS)
        stored = dict(stored) if isinstance(stored, dict) else {}
        # Re-encrypt the whole map so no entry stays plaintext once marked
        stored = {
            name: self._cipher.encrypt(self._cipher.decrypt(value))
            for name, value in stored.items()
            if isinstance(value, str)
        }
        stored[kind.value] = self._cipher.encrypt(key.strip())
        self._data[self.API_KEYS] = stored
        self._mark(self.API_KEYS)
        return self.flush()

    def get_provider_configs(self) -> list[ProviderConfig]:
        """Configured backends with decrypted credentials, in stored order."""
        stored = self._data.get(self.AI_PROVIDERS)
        if not isinstance(stored, list):
            return []

        configs = []
        for entry in stored:
            if not isinstance(entry, dict):
                logger.warning("Skipping malformed provider entry in device settings")
                continue
            credential = entry.get("credential")
            try:
                configs.append(
                    ProviderConfig.model_validate(
                        {
                            **entry,
                            "credential": self._cipher.decrypt(credential)
                            if isinstance(credential, str)
                            else "",
                        }
                    )
                )
            except ValidationError as e:
                logger.warning(f"Skipping invalid provider entry: {e.error_count()} errors")
        return configs

    def set_provider_configs(self, configs: list[ProviderConfig]) -> bool:
        self._data[self.AI_PROVIDERS] = [
            {
                **config.model_dump(mode="json"),
                "credential": self._cipher.encrypt(config.credential),
            }
            for config in configs
        ]
        self._mark(self.AI_PROVIDERS)
        return self.flush()

    # Plain preferences

    def get_setup_complete(self) -> bool:
        return bool(self._data.get("setupComplete", False))

    def set_setup_complete(self, complete: bool) -> bool:
        return self.set("setupComplete", bool(complete))

    def get_custom_user_name(self) -> str:
        return self._data.get("customUserName") or ""

    def set_custom_user_name(self, name: str) -> bool:
        return self.set("customUserName", name)

    def get_github_username(self) -> str:
        return self._data.get("githubUsername") or ""

    def set_github_username(self, username: str) -> bool:
        return self.set("githubUsername", username)

    def get_creator_codes(self) -> list[str]:
        codes = self._data.get("creatorCodes")
        return list(codes) if isinstance(codes, list) else []

    def set_creator_codes(self, codes: list[str]) -> bool:
        return self.set("creatorCodes", list(codes))

    def get_quick_capture_hotkey(self) -> str:
        return self._data.get("quickCaptureHotkey") or ""

    def set_quick_capture_hotkey(self, hotkey: str) -> bool:
        return self.set("quickCaptureHotkey", hotkey)

    def get_quick_capture_enabled(self) -> bool:
        return bool(self._data.get("quickCaptureEnabled", True))

    def set_quick_capture_enabled(self, enabled: bool) -> bool:
        return self.set("quickCaptureEnabled", bool(enabled))

    def apply_preload_config(self, preload_path: Path) -> bool:
        """Seed a fresh device from a bundled ``preload-config.json``.

        Copies ``personalConfig.{apiKey, githubUsername, githubToken,
        creatorCodes}`` and saves once.

        Returns:
            True if a preload file was applied
        """
        try:
            data = load_json(preload_path, storage=self._storage)
        except StorageNotFoundError:
            return False
        except StorageError as e:
            logger.warning(f"Failed to load preload config {preload_path}: {e}")
            return False

        config = data.get("personalConfig") if isinstance(data, dict) else None
        if not isinstance(config, dict):
            logger.warning(f"Preload config {preload_path} has no personalConfig")
            return False

        if isinstance(config.get("apiKey"), str):
            self._data[self.API_KEY] = self._cipher.encrypt(config["apiKey"].strip())
            self._mark(self.API_KEY)
        if isinstance(config.get("githubToken"), str):
            self._data[self.GITHUB_TOKEN] = self._cipher.encrypt(config["githubToken"].strip())
            self._mark(self.GITHUB_TOKEN)
        if config.get("githubUsername"):
            self._data["githubUsername"] = config["githubUsername"]
        if isinstance(config.get("creatorCodes"), list):
            self._data["creatorCodes"] = config["creatorCodes"]

        saved = self.flush()
        if saved:
            logger.info("Preload configuration applied")
        return saved


class GlobalSettingsStore(SettingsDocument):
    """Cross-device settings living in the synced folder."""

    def get_data_path(self, default: Path) -> Path:
        value = self._data.get("dataPath")
        return Path(value) if isinstance(value, str) and value else default

    def set_data_path(self, path: Path) -> bool:
        return self.set("dataPath", str(path))

    def get_theme(self) -> str | None:
        return self._data.get("theme")

    def set_theme(self, theme: str) -> bool:
        return self.set("theme", theme)
