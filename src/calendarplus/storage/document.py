"""Shared calendar document: sectioned JSON behind one lock and one write path.

The document holds independent sections (``notes``, ``drawing``, ``boards``,
``workspace``, ``todos`` and anything newer clients add). They are unrelated in
meaning but share a file, so writing any section re-serializes the whole
document. All operations go through the document's
:class:`~calendarplus.storage.lock.ExclusiveAccessQueue`; disk I/O runs in a
worker thread so the event loop stays responsive while a write is in flight.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from calendarplus.storage.errors import (
    StorageCorruptedError,
    StorageError,
    StorageNotFoundError,
    StorageValidationError,
)
from calendarplus.storage.file import FileStorage
from calendarplus.storage.helpers import load_json, save_json
from calendarplus.storage.lock import ExclusiveAccessQueue

logger = logging.getLogger(__name__)

KNOWN_SECTIONS = ("notes", "drawing", "boards", "workspace", "todos")

# Maximum number of recent files kept in the workspace section
MAX_RECENT_FILES = 10

DocumentMutator = Callable[[dict[str, Any]], dict[str, Any] | None]


def default_document() -> dict[str, Any]:
    """Document returned when nothing has been written yet."""
    return {"notes": {}}


def default_workspace() -> dict[str, Any]:
    return {
        "files": [],
        "folders": [],
        "recentFiles": [],
        "expandedFolders": [],
        "migrationComplete": False,
    }


def normalize_workspace(value: Any) -> dict[str, Any]:
    """Coerce a stored workspace section into its current shape.

    Unknown keys are kept. List fields that are missing or of the wrong type
    become empty lists.
    """
    if not isinstance(value, dict):
        return default_workspace()

    workspace = dict(value)
    for key in ("files", "folders", "recentFiles", "expandedFolders"):
        if not isinstance(workspace.get(key), list):
            workspace[key] = []
    workspace["migrationComplete"] = bool(workspace.get("migrationComplete", False))
    return workspace


def normalize_document(data: Any) -> dict[str, Any]:
    """Bring a loaded document up to the current schema.

    Raises:
        StorageCorruptedError: If the top level is not a JSON object
    """
    if not isinstance(data, dict):
        raise StorageCorruptedError(
            f"Calendar document must be a JSON object, got {type(data).__name__}"
        )

    document = dict(data)
    if not isinstance(document.get("notes"), dict):
        document["notes"] = {}
    if "workspace" in document:
        document["workspace"] = normalize_workspace(document["workspace"])
    return document


def add_to_recent_files(file_id: str, recent_files: list[str]) -> list[str]:
    """Move ``file_id`` to the front of the recent list, capped at MAX_RECENT_FILES."""
    updated = [file_id, *(fid for fid in recent_files if fid != file_id)]
    return updated[:MAX_RECENT_FILES]


@dataclass(frozen=True)
class SaveResult:
    """Outcome of a save for callers that report rather than raise.

    Attributes:
        success: Whether the document was durably written.
        error: Error message if the write failed (prior content is intact).
    """

    success: bool
    error: str | None = None


class SharedDocumentStore:
    """Serialized, crash-safe access to the shared calendar document.

    Example:
        ```python
        store = SharedDocumentStore(settings.default_data_path)

        notes = await store.read_section("notes", {})
        notes["2026-10-17"] = [{"title": "Dentist"}]
        await store.write_section("notes", notes)
        ```
    """

    def __init__(
        self,
        path: Path,
        queue: ExclusiveAccessQueue | None = None,
        storage: FileStorage | None = None,
    ) -> None:
        self._path = Path(path)
        self._queue = queue or ExclusiveAccessQueue(self._path.name)
        self._storage = storage or FileStorage()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def queue(self) -> ExclusiveAccessQueue:
        return self._queue

    def set_path(self, path: Path) -> None:
        """Point the store at a new document location (e.g. a new data folder).

        The access queue is kept, so in-flight operations on the old path
        finish before any operation on the new one starts.
        """
        self._path = Path(path)
        logger.info(f"Calendar document path set to {self._path}")

    def _load_sync(self) -> dict[str, Any]:
        try:
            data = load_json(self._path, storage=self._storage)
        except StorageNotFoundError:
            return default_document()
        return normalize_document(data)

    def _save_sync(self, document: dict[str, Any]) -> None:
        if not isinstance(document, dict):
            raise StorageValidationError(
                f"Calendar document must be a dict, got {type(document).__name__}"
            )
        save_json(self._path, normalize_document(document), storage=self._storage)

    async def read(self) -> dict[str, Any]:
        """Read the whole document ({"notes": {}} if it does not exist yet).

        Raises:
            StorageCorruptedError: If the file is not a valid document
            StorageError: If the file cannot be read
        """
        async with self._queue:
            return await asyncio.to_thread(self._load_sync)

    async def write(self, document: dict[str, Any]) -> None:
        """Replace the whole document.

        Raises:
            StorageError: If the write fails (prior content is left intact)
        """
        async with self._queue:
            await asyncio.to_thread(self._save_sync, document)

    async def read_section(self, name: str, default: Any = None) -> Any:
        document = await self.read()
        return document.get(name, default)

    async def write_section(self, name: str, value: Any) -> dict[str, Any]:
        """Replace one section, keeping every other section as stored."""

        def _set(document: dict[str, Any]) -> None:
            document[name] = value

        return await self.update(_set)

    async def update(self, mutator: DocumentMutator) -> dict[str, Any]:
        """Read-modify-write under the lock.

        ``mutator`` receives the current document and may mutate it in place
        or return a replacement. The written document is returned.
        """
        async with self._queue:
            document = await asyncio.to_thread(self._load_sync)
            replacement = mutator(document)
            if replacement is not None:
                document = replacement
            await asyncio.to_thread(self._save_sync, document)
            logger.debug(f"Updated calendar document {self._path.name}")
            return document

    async def save_result(self, document: dict[str, Any]) -> SaveResult:
        try:
            await self.write(document)
        except StorageError as e:
            logger.error(f"Failed to save calendar document: {e}")
            return SaveResult(success=False, error=str(e))
        return SaveResult(success=True)

    async def save_section_result(self, name: str, value: Any) -> SaveResult:
        try:
            await self.write_section(name, value)
        except StorageError as e:
            logger.error(f"Failed to save section '{name}': {e}")
            return SaveResult(success=False, error=str(e))
        return SaveResult(success=True)
