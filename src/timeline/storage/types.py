"""Shared types and exceptions for the key-value storage layer."""

from enum import Enum


class StorageType(str, Enum):
    """Supported storage backends."""

    MEMORY = "memory"
    JSON = "json"
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class StorageError(Exception):
    """Base exception for storage operations."""

    pass


class StorageConnectionError(StorageError):
    """Error opening the storage backend."""

    pass


class StorageReadError(StorageError):
    """Error reading a value."""

    pass


class StorageWriteError(StorageError):
    """Error writing or removing a value."""

    pass
