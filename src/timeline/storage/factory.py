"""Storage factory for creating key-value storage backends.

This module provides a factory function and configuration class for creating
the storage backend named by the storage type.
"""

from dataclasses import dataclass
from pathlib import Path

from .interface import KeyValueStorage
from .json_file import JSONFileStorage
from .memory import MemoryStorage
from .sqlite_storage import SQLiteStorage
from .types import StorageType


@dataclass
class StorageConfig:
    """Storage configuration container.

    Attributes:
        storage_type: Backend type ('memory', 'json', 'sqlite' or 'postgresql')
        path: Directory (json) or database file (sqlite)
        host: PostgreSQL host (for PostgreSQL only)
        port: PostgreSQL port (for PostgreSQL only)
        database: PostgreSQL database name (for PostgreSQL only)
        user: PostgreSQL username (for PostgreSQL only)
        password: PostgreSQL password (for PostgreSQL only)
    """

    storage_type: StorageType | str
    # File-based backends
    path: Path | None = None
    # PostgreSQL-specific
    host: str | None = None
    port: int | None = None
    database: str | None = None
    user: str | None = None
    password: str | None = None
    pool_size: int = 1

    def __post_init__(self):
        """Validate configuration after initialization."""
        if isinstance(self.storage_type, str):
            try:
                self.storage_type = StorageType(self.storage_type.lower())
            except ValueError as e:
                raise ValueError(
                    f"Unsupported storage type: {self.storage_type}. "
                    f"Must be one of: {', '.join(t.value for t in StorageType)}"
                ) from e

        if self.storage_type in (StorageType.JSON, StorageType.SQLITE):
            if self.path is None:
                raise ValueError(f"path is required for {self.storage_type.value} storage")
            if isinstance(self.path, str):
                self.path = Path(self.path)

        elif self.storage_type == StorageType.POSTGRESQL:
            if not all([self.host, self.database, self.user]):
                raise ValueError("host, database, and user are required for PostgreSQL")
            if self.port is None:
                self.port = 5432


def create_storage(config: StorageConfig) -> KeyValueStorage:
    """Factory function to create the configured storage backend.

    Args:
        config: Storage configuration

    Returns:
        Storage instance (not yet connected)

    Example:
        >>> storage = create_storage(StorageConfig("sqlite", path=Path("data/timeline.db")))
        >>> with storage:
        ...     storage.set_item("@timeline_items", "[]")
    """
    if config.storage_type == StorageType.MEMORY:
        return MemoryStorage()

    if config.storage_type == StorageType.JSON:
        return JSONFileStorage(config.path)

    if config.storage_type == StorageType.SQLITE:
        return SQLiteStorage(config.path)

    if config.storage_type == StorageType.POSTGRESQL:
        # Import here to avoid requiring psycopg when not using PostgreSQL
        from .postgres_storage import PostgreSQLStorage

        return PostgreSQLStorage(
            host=config.host,
            port=config.port,
            database=config.database,
            user=config.user,
            password=config.password or "",
            pool_size=config.pool_size,
        )

    raise ValueError(f"Unsupported storage type: {config.storage_type}")


def get_storage() -> KeyValueStorage:
    """Create the storage backend described by the environment.

    Reads TIMELINE_STORAGE_TYPE and the matching path or PostgreSQL settings.
    """
    from common.env import env

    storage_type = env.storage_type().lower()

    if storage_type == StorageType.POSTGRESQL.value:
        config = StorageConfig(
            storage_type=storage_type,
            host=env.postgres_host(),
            port=env.postgres_port(),
            database=env.postgres_database(),
            user=env.postgres_user(),
            password=env.postgres_password(),
            pool_size=env.postgres_pool_size(),
        )
    else:
        config = StorageConfig(storage_type=storage_type, path=env.storage_path())

    return create_storage(config)
