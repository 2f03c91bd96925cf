"""Durable key-value storage for the timeline store.

Example:
    >>> from timeline.storage import StorageConfig, create_storage
    >>>
    >>> storage = create_storage(StorageConfig(storage_type="json", path="data/timeline"))
    >>> with storage:
    ...     storage.set_item("@timeline_items", "[]")
    ...     storage.get_item("@timeline_items")
    '[]'
"""

from .factory import StorageConfig, create_storage, get_storage
from .interface import KeyValueStorage
from .json_file import JSONFileStorage
from .memory import MemoryStorage
from .sqlite_storage import SQLiteStorage
from .types import (
    StorageConnectionError,
    StorageError,
    StorageReadError,
    StorageType,
    StorageWriteError,
)

__all__ = [
    # Factory
    "StorageConfig",
    "create_storage",
    "get_storage",
    # Interface and backends
    "KeyValueStorage",
    "JSONFileStorage",
    "MemoryStorage",
    "SQLiteStorage",
    # Types and exceptions
    "StorageType",
    "StorageError",
    "StorageConnectionError",
    "StorageReadError",
    "StorageWriteError",
]
