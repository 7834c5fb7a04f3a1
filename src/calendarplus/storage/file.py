"""File-based storage implementation with atomic writes.

Every persistence path in the package funnels through :func:`atomic_write`:
content goes to a temporary file beside the target, is read back and checked,
and only then replaces the target. A crash at any point leaves the target with
either its previous or its new content, never a mix. The worst leftover is an
orphaned ``.<name>.*.tmp`` file, removed by :func:`cleanup_orphaned_temp_files`
on the next start.
"""

from __future__ import annotations

import atexit
import contextlib
import json
import logging
import os
import secrets
import shutil
import time
from pathlib import Path

from calendarplus.storage.errors import (
    StorageError,
    StorageNotFoundError,
    StoragePermissionError,
    StorageSwapError,
    StorageValidationError,
    StorageWriteError,
)

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"

# Path objects don't support weak references, hence a plain set
_temp_files_registry: set[Path] = set()


def _cleanup_temp_files() -> None:
    """Remove temp files still registered when the interpreter exits."""
    for temp_path in list(_temp_files_registry):
        try:
            if temp_path.exists():
                temp_path.unlink()
                logger.debug(f"Cleaned up temp file on exit: {temp_path}")
        except OSError as e:
            logger.warning(f"Failed to cleanup temp file {temp_path}: {e}")


atexit.register(_cleanup_temp_files)


def cleanup_orphaned_temp_files(directory: Path, pattern: str = f".*{TEMP_SUFFIX}") -> int:
    """Clean up orphaned temporary files from previous crashes.

    Should be called at startup for every directory that holds an
    atomically written document.

    Args:
        directory: Directory to search for temp files
        pattern: Glob pattern for temp files (default: ".*.tmp")

    Returns:
        Number of files cleaned up
    """
    if not directory.exists() or not directory.is_dir():
        return 0

    cleaned_count = 0
    try:
        for temp_file in directory.glob(pattern):
            if temp_file.is_file() and temp_file not in _temp_files_registry:
                try:
                    temp_file.unlink()
                    logger.info(f"Cleaned up orphaned temp file: {temp_file}")
                    cleaned_count += 1
                except OSError as e:
                    logger.warning(f"Failed to clean up temp file {temp_file}: {e}")
    except OSError as e:
        logger.warning(f"Error scanning directory {directory} for temp files: {e}")

    return cleaned_count


def _temp_path_for(path: Path) -> Path:
    """Build a unique temp path in the same directory as ``path``.

    Same directory means same volume, which ``os.replace`` needs to be atomic.
    """
    stamp = int(time.time() * 1000)
    return path.with_name(f".{path.name}.{stamp}.{secrets.token_hex(4)}{TEMP_SUFFIX}")


def _write_temp(tmp_path: Path, data: bytes) -> None:
    try:
        with tmp_path.open("xb") as tmp_file:
            tmp_file.write(data)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
    except OSError as e:
        raise StorageWriteError(f"Failed to write temp file {tmp_path}: {e}") from e


def _verify_temp(tmp_path: Path, data: bytes, validate_json: bool) -> None:
    try:
        written = tmp_path.read_bytes()
    except OSError as e:
        raise StorageWriteError(f"Failed to read back temp file {tmp_path}: {e}") from e

    if written != data:
        raise StorageWriteError(
            f"Temp file {tmp_path} does not match content "
            f"({len(written)} of {len(data)} bytes)"
        )

    if validate_json:
        try:
            json.loads(written.decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as e:
            raise StorageValidationError(f"Refusing to write invalid JSON: {e}") from e


def _swap_into_place(tmp_path: Path, path: Path) -> None:
    """Commit the temp file over the target.

    Rename is the atomic commit point. Some filesystems (and Windows when
    the target is held open) refuse to rename onto an existing file; there
    the temp file is copied over the target instead.
    """
    try:
        os.replace(tmp_path, path)
        return
    except (FileExistsError, PermissionError) as e:
        if not path.exists():
            raise StorageSwapError(f"Failed to move {tmp_path} to {path}: {e}") from e
        logger.debug(f"Rename onto {path} refused ({e}), falling back to copy")
    except OSError as e:
        raise StorageSwapError(f"Failed to move {tmp_path} to {path}: {e}") from e

    try:
        shutil.copyfile(tmp_path, path)
    except OSError as e:
        raise StorageSwapError(f"Failed to copy {tmp_path} over {path}: {e}") from e


def atomic_write(path: Path, content: bytes | str, validate_json: bool = False) -> None:
    """Durably replace ``path`` with ``content``.

    Args:
        path: Destination path
        content: Full new content (str is encoded as UTF-8)
        validate_json: Parse the written bytes as JSON before committing

    Raises:
        StoragePermissionError: If the parent directory cannot be created
        StorageWriteError: If the temp file cannot be written or read back
        StorageValidationError: If ``validate_json`` and the content is not JSON
        StorageSwapError: If the final commit fails
    """
    path = Path(path)
    data = content.encode("utf-8") if isinstance(content, str) else content

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except PermissionError as e:
        raise StoragePermissionError(
            f"Cannot create directory {path.parent}: permission denied"
        ) from e
    except OSError as e:
        raise StorageWriteError(f"Failed to create directory {path.parent}: {e}") from e

    tmp_path = _temp_path_for(path)
    _temp_files_registry.add(tmp_path)
    try:
        _write_temp(tmp_path, data)
        _verify_temp(tmp_path, data, validate_json)
        _swap_into_place(tmp_path, path)
        logger.debug(f"Saved {len(data)} bytes to {path}")
    finally:
        _temp_files_registry.discard(tmp_path)
        if tmp_path.exists():
            with contextlib.suppress(OSError):
                tmp_path.unlink()


class FileStorage:
    """File system storage with atomic write operations.

    Example:
        ```python
        storage = FileStorage()
        storage.save(path, '{"notes": {}}', validate_json=True)
        data = storage.load(path)
        ```
    """

    def save(self, path: Path, content: bytes | str, validate_json: bool = False) -> None:
        """Save content with atomic write.

        Raises:
            StorageError: If any step of the write fails (target untouched)
        """
        atomic_write(path, content, validate_json=validate_json)

    def load(self, path: Path) -> bytes:
        """Load content from file.

        Raises:
            StorageNotFoundError: If file doesn't exist
            StoragePermissionError: If read permission denied
            StorageError: If operation fails
        """
        try:
            content = path.read_bytes()
            logger.debug(f"Loaded {len(content)} bytes from {path}")
            return content
        except FileNotFoundError as e:
            raise StorageNotFoundError(f"File not found: {path}") from e
        except PermissionError as e:
            raise StoragePermissionError(f"Cannot read {path}: permission denied") from e
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def exists(self, path: Path) -> bool:
        return path.exists()
