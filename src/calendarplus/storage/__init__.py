"""Storage layer for the calendar document and settings files.

Provides:
- Atomic writes (temp file, read-back check, swap) for every document
- An exclusive-access queue serializing work on the shared document
- The sectioned shared document store
- JSON helpers

Example:
    ```python
    from calendarplus.storage import SharedDocumentStore, save_json, load_json

    store = SharedDocumentStore(path)
    await store.write_section("drawing", drawing)

    save_json(path, {"key": "value"})
    data = load_json(path)
    ```
"""

from __future__ import annotations

from calendarplus.storage.document import (
    SaveResult,
    SharedDocumentStore,
    add_to_recent_files,
    normalize_document,
)
from calendarplus.storage.errors import (
    StorageCorruptedError,
    StorageError,
    StorageNotFoundError,
    StoragePermissionError,
    StorageSwapError,
    StorageValidationError,
    StorageWriteError,
)
from calendarplus.storage.file import FileStorage, atomic_write, cleanup_orphaned_temp_files
from calendarplus.storage.helpers import load_json, save_json
from calendarplus.storage.lock import ExclusiveAccessQueue

__all__ = [
    # Primitives
    "atomic_write",
    "cleanup_orphaned_temp_files",
    "ExclusiveAccessQueue",
    # Implementations
    "FileStorage",
    "SharedDocumentStore",
    "SaveResult",
    # Helpers
    "save_json",
    "load_json",
    "add_to_recent_files",
    "normalize_document",
    # Exceptions
    "StorageError",
    "StorageNotFoundError",
    "StoragePermissionError",
    "StorageWriteError",
    "StorageValidationError",
    "StorageSwapError",
    "StorageCorruptedError",
]
