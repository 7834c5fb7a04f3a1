"""Storage layer exceptions."""

from __future__ import annotations


class StorageError(Exception):
    """Base exception for storage operations."""


class StorageNotFoundError(StorageError):
    """Raised when a file or resource is not found."""


class StoragePermissionError(StorageError):
    """Raised when operation fails due to insufficient permissions."""


class StorageWriteError(StorageError):
    """Raised when the temporary file cannot be written in full."""


class StorageValidationError(StorageError):
    """Raised when content validation fails before the swap."""


class StorageSwapError(StorageError):
    """Raised when the final commit of a temporary file fails."""


class StorageCorruptedError(StorageError):
    """Raised when stored data is corrupted or invalid."""
