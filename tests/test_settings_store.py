"""Tests for device/global settings and plaintext secret migration."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from calendarplus.config import Settings
from calendarplus.models import ProviderConfig, ProviderKind
from calendarplus.security.secrets import SecretCipher
from calendarplus.settings import (
    DeviceSettingsStore,
    GlobalSettingsStore,
    SettingsDocument,
    migrate_secrets,
)
from calendarplus.settings import store as store_module
from calendarplus.storage import file as file_module


def _read(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


class TestSettingsDocument:
    def test_missing_file_opens_empty(self, isolated_tmp_dir: Path) -> None:
        doc = SettingsDocument(isolated_tmp_dir / "settings.json").open()

        assert doc.snapshot() == {}
        assert doc.get("theme", "light") == "light"

    def test_set_persists(self, isolated_tmp_dir: Path) -> None:
        path = isolated_tmp_dir / "settings.json"

        with SettingsDocument(path) as doc:
            assert doc.set("theme", "dark")

        assert SettingsDocument(path).open().get("theme") == "dark"

    def test_update_and_delete(self, isolated_tmp_dir: Path) -> None:
        path = isolated_tmp_dir / "settings.json"
        doc = SettingsDocument(path).open()

        doc.update({"a": 1, "b": 2})
        doc.delete("a")
        doc.delete("never-set")

        assert _read(path) == {"b": 2}

    def test_corrupted_file_is_not_fatal(
        self, isolated_tmp_dir: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        path = isolated_tmp_dir / "settings.json"
        path.write_text("{ not json", encoding="utf-8")

        with caplog.at_level(logging.WARNING):
            doc = SettingsDocument(path).open()

        assert doc.snapshot() == {}
        assert "using defaults" in caplog.text

    def test_non_object_file_is_not_fatal(self, isolated_tmp_dir: Path) -> None:
        path = isolated_tmp_dir / "settings.json"
        path.write_text("[]", encoding="utf-8")

        assert SettingsDocument(path).open().snapshot() == {}

    @pytest.mark.parametrize(
        "content",
        ['{"apiKey": "gAAAA-encrypted", "theme": "dark",', "[1, 2]", "\x00\x01garbage"],
    )
    def test_unreadable_file_survives_open_and_close(
        self, isolated_tmp_dir: Path, content: str
    ) -> None:
        path = isolated_tmp_dir / "settings.json"
        path.write_text(content, encoding="utf-8")
        before = path.read_bytes()

        doc = SettingsDocument(path).open()
        doc.close()

        assert path.read_bytes() == before

    def test_unreadable_device_file_survives_open_and_close(
        self, isolated_tmp_dir: Path, cipher: SecretCipher
    ) -> None:
        path = isolated_tmp_dir / "device-settings.json"
        path.write_text('{"apiKey": "gAAAA-encrypted", "_apiKeyEncrypted": tr', encoding="utf-8")
        before = path.read_bytes()

        with DeviceSettingsStore(path, cipher) as store:
            assert store.get_api_key() == ""

        assert path.read_bytes() == before

    def test_unreadable_file_replaced_after_a_change(self, isolated_tmp_dir: Path) -> None:
        path = isolated_tmp_dir / "settings.json"
        path.write_text("{ not json", encoding="utf-8")

        with SettingsDocument(path) as doc:
            doc.set("theme", "dark")

        assert _read(path) == {"theme": "dark"}

    def test_clean_close_does_not_write(self, isolated_tmp_dir: Path) -> None:
        path = isolated_tmp_dir / "settings.json"
        SettingsDocument(path).open().set("theme", "dark")
        doc = SettingsDocument(path).open()

        with patch.object(store_module, "save_json", wraps=store_module.save_json) as save:
            assert doc.close() is True

        save.assert_not_called()
        assert not doc.is_dirty

    def test_close_retries_failed_save(self, isolated_tmp_dir: Path) -> None:
        path = isolated_tmp_dir / "settings.json"
        doc = SettingsDocument(path).open()

        with patch.object(file_module.os, "replace", side_effect=OSError("EIO")):
            assert doc.set("theme", "dark") is False
        assert doc.is_dirty

        assert doc.close() is True
        assert _read(path) == {"theme": "dark"}

    def test_failed_save_returns_false_and_keeps_file(self, isolated_tmp_dir: Path) -> None:
        path = isolated_tmp_dir / "settings.json"
        doc = SettingsDocument(path).open()
        doc.set("theme", "dark")

        with patch.object(file_module.os, "replace", side_effect=OSError("EIO")):
            assert doc.set("theme", "light") is False

        assert _read(path) == {"theme": "dark"}

    def test_snapshot_is_a_copy(self, isolated_tmp_dir: Path) -> None:
        doc = SettingsDocument(isolated_tmp_dir / "settings.json").open()
        doc.set("codes", ["a"])

        doc.snapshot()["codes"].append("b")

        assert doc.get("codes") == ["a"]


class TestSecretMigration:
    """Legacy plaintext secrets are encrypted once, on open."""

    def test_legacy_secrets_encrypted_on_open(
        self,
        test_settings: Settings,
        cipher: SecretCipher,
        legacy_device_settings: dict[str, Any],
    ) -> None:
        store = DeviceSettingsStore(test_settings.device_settings_path, cipher).open()
        on_disk = _read(test_settings.device_settings_path)

        assert cipher.is_encrypted(on_disk["apiKey"])
        assert cipher.is_encrypted(on_disk["githubToken"])
        assert all(cipher.is_encrypted(v) for v in on_disk["apiKeys"].values())
        assert all(cipher.is_encrypted(p["credential"]) for p in on_disk["aiProviders"])
        for marker in (
            "_apiKeyEncrypted",
            "_apiKeysEncrypted",
            "_githubTokenEncrypted",
            "_aiProvidersEncrypted",
        ):
            assert on_disk[marker] is True

        assert store.get_api_key() == "AIzaLegacyGeminiKey"
        assert store.get_github_token() == "ghp_legacytoken"
        assert store.get_api_keys() == {"openai": "sk-legacy-openai", "groq": "gsk_legacy"}
        assert [c.credential for c in store.get_provider_configs()] == [
            "AIzaLegacyGeminiKey",
            "sk-legacy-openai",
        ]
        # Non-secret keys are untouched
        assert on_disk["customUserName"] == "Sam"

    def test_second_open_is_byte_identical_and_does_not_write(
        self,
        test_settings: Settings,
        cipher: SecretCipher,
        legacy_device_settings: dict[str, Any],
    ) -> None:
        path = test_settings.device_settings_path
        DeviceSettingsStore(path, cipher).open()
        first = path.read_bytes()

        with patch.object(store_module, "save_json", wraps=store_module.save_json) as save:
            DeviceSettingsStore(path, cipher).open()

        save.assert_not_called()
        assert path.read_bytes() == first

    def test_migration_skipped_without_encryption(
        self,
        test_settings: Settings,
        cipher: SecretCipher,
        unavailable_cipher: SecretCipher,
        legacy_device_settings: dict[str, Any],
    ) -> None:
        path = test_settings.device_settings_path
        before = path.read_bytes()

        store = DeviceSettingsStore(path, unavailable_cipher).open()

        assert path.read_bytes() == before
        assert store.get_api_key() == "AIzaLegacyGeminiKey"

        # A later run with encryption still performs the migration
        DeviceSettingsStore(path, cipher).open()
        assert _read(path)["_apiKeyEncrypted"] is True

    def test_empty_families_left_unmarked(self, cipher: SecretCipher) -> None:
        document: dict[str, Any] = {"apiKey": "AIzaKey", "githubToken": ""}

        assert migrate_secrets(document, cipher) is True

        assert document["_apiKeyEncrypted"] is True
        assert "_githubTokenEncrypted" not in document
        assert "_apiKeysEncrypted" not in document

    def test_failed_family_does_not_block_others(
        self, cipher: SecretCipher, caplog: pytest.LogCaptureFixture
    ) -> None:
        document: dict[str, Any] = {"apiKeys": "should-be-a-map", "githubToken": "ghp_x"}

        with caplog.at_level(logging.WARNING):
            changed = migrate_secrets(document, cipher)

        assert changed
        assert document["apiKeys"] == "should-be-a-map"
        assert "_apiKeysEncrypted" not in document
        assert cipher.decrypt(document["githubToken"]) == "ghp_x"
        assert "apiKeys" in caplog.text

    def test_marked_family_not_reencrypted(self, cipher: SecretCipher) -> None:
        document: dict[str, Any] = {"apiKey": "plain", "_apiKeyEncrypted": True}

        assert migrate_secrets(document, cipher) is False
        assert document["apiKey"] == "plain"

    def test_already_encrypted_value_kept(self, cipher: SecretCipher) -> None:
        token = cipher.encrypt("AIzaKey")
        document: dict[str, Any] = {"apiKey": token}

        migrate_secrets(document, cipher)

        assert document["apiKey"] == token


class TestDeviceSettingsStore:
    def test_set_api_key_encrypts_and_marks(
        self, device_store: DeviceSettingsStore, cipher: SecretCipher
    ) -> None:
        assert device_store.set_api_key("  AIzaNewKey  ")

        on_disk = _read(device_store.path)
        assert on_disk["_apiKeyEncrypted"] is True
        assert cipher.decrypt(on_disk["apiKey"]) == "AIzaNewKey"
        assert device_store.get_api_key() == "AIzaNewKey"

    def test_set_api_key_without_encryption_stays_unmarked(
        self, test_settings: Settings, unavailable_cipher: SecretCipher
    ) -> None:
        store = DeviceSettingsStore(test_settings.device_settings_path, unavailable_cipher).open()

        store.set_api_key("AIzaPlain")

        on_disk = _read(store.path)
        assert on_disk["apiKey"] == "AIzaPlain"
        assert "_apiKeyEncrypted" not in on_disk

    def test_backend_api_keys(self, device_store: DeviceSettingsStore, cipher: SecretCipher) -> None:
        device_store.set_backend_api_key(ProviderKind.OPENAI, "sk-openai")
        device_store.set_backend_api_key(ProviderKind.GROQ, "gsk_groq")

        stored = _read(device_store.path)["apiKeys"]
        assert set(stored) == {"openai", "groq"}
        assert all(cipher.is_encrypted(v) for v in stored.values())
        assert device_store.get_api_keys() == {"openai": "sk-openai", "groq": "gsk_groq"}

    def test_provider_configs_round_trip(
        self, device_store: DeviceSettingsStore, cipher: SecretCipher
    ) -> None:
        configs = [
            ProviderConfig(kind=ProviderKind.ANTHROPIC, credential="sk-ant-1", priority=1),
            ProviderConfig(kind=ProviderKind.GEMINI, credential="AIza1", priority=0, enabled=False),
        ]

        device_store.set_provider_configs(configs)

        stored = _read(device_store.path)["aiProviders"]
        assert [cipher.decrypt(p["credential"]) for p in stored] == ["sk-ant-1", "AIza1"]
        assert all(cipher.is_encrypted(p["credential"]) for p in stored)
        assert device_store.get_provider_configs() == configs

    def test_invalid_provider_entries_skipped(
        self, test_settings: Settings, cipher: SecretCipher
    ) -> None:
        path = test_settings.device_settings_path
        path.parent.mkdir(parents=True)
        path.write_text(
            json.dumps(
                {
                    "aiProviders": [
                        {"kind": "mystery", "credential": "x"},
                        "garbage",
                        {"kind": "groq", "credential": "gsk_ok", "priority": 3},
                    ],
                    "_aiProvidersEncrypted": True,
                }
            ),
            encoding="utf-8",
        )

        configs = DeviceSettingsStore(path, cipher).open().get_provider_configs()

        assert configs == [ProviderConfig(kind=ProviderKind.GROQ, credential="gsk_ok", priority=3)]

    def test_plain_preferences(self, device_store: DeviceSettingsStore) -> None:
        assert device_store.get_setup_complete() is False
        assert device_store.get_quick_capture_enabled() is True

        device_store.set_setup_complete(True)
        device_store.set_custom_user_name("Alex")
        device_store.set_quick_capture_hotkey("CommandOrControl+Shift+N")
        device_store.set_quick_capture_enabled(False)
        device_store.set_creator_codes(["1234-5678-9012"])
        device_store.set_github_username("octocat")

        reopened = DeviceSettingsStore(device_store.path, device_store.cipher).open()
        assert reopened.get_setup_complete() is True
        assert reopened.get_custom_user_name() == "Alex"
        assert reopened.get_quick_capture_hotkey() == "CommandOrControl+Shift+N"
        assert reopened.get_quick_capture_enabled() is False
        assert reopened.get_creator_codes() == ["1234-5678-9012"]
        assert reopened.get_github_username() == "octocat"

    def test_apply_preload_config(
        self, device_store: DeviceSettingsStore, cipher: SecretCipher, isolated_tmp_dir: Path
    ) -> None:
        preload = isolated_tmp_dir / "preload-config.json"
        preload.write_text(
            json.dumps(
                {
                    "personalConfig": {
                        "apiKey": "AIzaPreloaded",
                        "githubUsername": "octocat",
                        "githubToken": "ghp_preloaded",
                        "creatorCodes": ["1111-2222-3333"],
                    }
                }
            ),
            encoding="utf-8",
        )

        assert device_store.apply_preload_config(preload)

        on_disk = _read(device_store.path)
        assert cipher.is_encrypted(on_disk["apiKey"])
        assert device_store.get_api_key() == "AIzaPreloaded"
        assert device_store.get_github_token() == "ghp_preloaded"
        assert device_store.get_github_username() == "octocat"
        assert device_store.get_creator_codes() == ["1111-2222-3333"]

    def test_apply_missing_preload_config(
        self, device_store: DeviceSettingsStore, isolated_tmp_dir: Path
    ) -> None:
        assert device_store.apply_preload_config(isolated_tmp_dir / "missing.json") is False


class TestGlobalSettingsStore:
    def test_data_path_default_and_override(self, isolated_tmp_dir: Path) -> None:
        store = GlobalSettingsStore(isolated_tmp_dir / "settings.json").open()
        default = isolated_tmp_dir / "calendar-data.json"

        assert store.get_data_path(default) == default

        custom = isolated_tmp_dir / "Dropbox" / "calendar-data.json"
        store.set_data_path(custom)

        assert store.get_data_path(default) == custom
        assert _read(store.path) == {"dataPath": str(custom)}

    def test_theme(self, isolated_tmp_dir: Path) -> None:
        store = GlobalSettingsStore(isolated_tmp_dir / "settings.json").open()

        assert store.get_theme() is None
        store.set_theme("midnight")
        assert store.get_theme() == "midnight"
