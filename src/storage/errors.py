from __future__ import annotations


class StorageError(Exception):
    """Base error for storage backends."""


class NotFoundError(StorageError):
    """Raised when a get, update or delete targets a key that does not exist."""


class AlreadyExistsError(StorageError):
    """Raised when a create targets a key that is already present."""
