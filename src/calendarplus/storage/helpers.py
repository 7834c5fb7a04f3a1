"""Helper functions for common storage operations."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from calendarplus.storage.errors import StorageCorruptedError, StorageValidationError
from calendarplus.storage.file import FileStorage

# Default storage instance
_default_storage = FileStorage()


def dump_json(data: Any, *, indent: int = 2) -> str:
    """Serialize data the way every document on disk is serialized.

    Raises:
        StorageValidationError: If data cannot be serialized
    """
    try:
        return json.dumps(data, indent=indent, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise StorageValidationError(f"Cannot serialize to JSON: {e}") from e


def save_json(
    path: Path,
    data: Any,
    *,
    indent: int = 2,
    storage: FileStorage | None = None,
) -> None:
    """Save data as JSON with atomic write.

    The serialized text is parsed again from the temp file before it
    replaces ``path``.

    Raises:
        StorageValidationError: If data cannot be serialized
        StorageError: If the atomic write fails
    """
    storage = storage or _default_storage
    storage.save(path, dump_json(data, indent=indent), validate_json=True)


def load_json(path: Path, *, storage: FileStorage | None = None) -> Any:
    """Load JSON data from file.

    Raises:
        StorageNotFoundError: If file doesn't exist
        StorageCorruptedError: If JSON is invalid
        StoragePermissionError: If read permission denied
        StorageError: If operation fails
    """
    storage = storage or _default_storage

    content = storage.load(path)

    try:
        return json.loads(content.decode("utf-8"))
    except json.JSONDecodeError as e:
        raise StorageCorruptedError(f"Invalid JSON in {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise StorageCorruptedError(f"Invalid UTF-8 encoding in {path}: {e}") from e
