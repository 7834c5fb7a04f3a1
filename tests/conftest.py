"""Pytest configuration and shared fixtures for CalendarPlus tests.

Fixtures:
- isolated_tmp_dir: Isolated temporary directory (auto-cleanup)
- test_settings: Settings pointing every directory into isolated_tmp_dir
- cipher / unavailable_cipher: SecretCipher with a fresh key / without one
- device_store: Opened DeviceSettingsStore backed by isolated_tmp_dir
- legacy_device_settings: Plaintext device-settings.json as written by old versions
"""

from __future__ import annotations

import json
from collections.abc import Generator, Iterator
from pathlib import Path
from typing import Any

import pytest
from cryptography.fernet import Fernet

from calendarplus.config import Settings, reset_settings
from calendarplus.security.secrets import SecretCipher
from calendarplus.settings.store import DeviceSettingsStore
from calendarplus.utils.logging import clear_correlation_id


@pytest.fixture
def isolated_tmp_dir(tmp_path: Path) -> Generator[Path, None, None]:
    """Provide an isolated temporary directory that is auto-cleaned.

    Yields:
        Path to isolated temporary directory
    """
    test_dir = tmp_path / "test_workspace"
    test_dir.mkdir(parents=True, exist_ok=True)
    yield test_dir


@pytest.fixture(autouse=True)
def _reset_global_state() -> Iterator[None]:
    """Drop cached settings and correlation IDs between tests."""
    reset_settings()
    clear_correlation_id()
    yield
    reset_settings()
    clear_correlation_id()


@pytest.fixture
def test_settings(isolated_tmp_dir: Path) -> Settings:
    return Settings(
        _env_file=None,
        data_dir=isolated_tmp_dir / "data",
        config_dir=isolated_tmp_dir / "config",
        sync_dir=isolated_tmp_dir / "sync",
        log_to_file=False,
        gemini_api_key="",
        gemini_models=["m1", "m2", "m3"],
    )


@pytest.fixture
def cipher() -> SecretCipher:
    return SecretCipher(Fernet.generate_key())


@pytest.fixture
def unavailable_cipher() -> SecretCipher:
    return SecretCipher(None)


@pytest.fixture
def device_store(test_settings: Settings, cipher: SecretCipher) -> DeviceSettingsStore:
    return DeviceSettingsStore(test_settings.device_settings_path, cipher).open()


@pytest.fixture
def legacy_device_settings(test_settings: Settings) -> dict[str, Any]:
    """Write a pre-encryption device settings file and return its content."""
    data = {
        "apiKey": "AIzaLegacyGeminiKey",
        "apiKeys": {"openai": "sk-legacy-openai", "groq": "gsk_legacy"},
        "githubToken": "ghp_legacytoken",
        "aiProviders": [
            {"kind": "gemini", "credential": "AIzaLegacyGeminiKey", "enabled": True, "priority": 0},
            {"kind": "openai", "credential": "sk-legacy-openai", "enabled": True, "priority": 1},
        ],
        "setupComplete": True,
        "customUserName": "Sam",
    }
    path = test_settings.device_settings_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return data
