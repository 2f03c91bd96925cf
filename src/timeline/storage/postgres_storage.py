"""PostgreSQL storage backend.

Wraps psycopg3 with a connection pool; each operation borrows a connection
and commits when it is returned.
"""

from typing import Any

try:
    import psycopg
    from psycopg_pool import ConnectionPool
except ImportError as e:
    raise ImportError(
        "PostgreSQL dependencies not installed. "
        'Install with: pip install -e ".[postgresql]"'
    ) from e

from .interface import KeyValueStorage
from .types import StorageConnectionError, StorageReadError, StorageWriteError

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""


class PostgreSQLStorage(KeyValueStorage):
    """PostgreSQL key-value storage."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "lifestory",
        user: str = "postgres",
        password: str = "",
        pool_size: int = 1,
    ):
        """Initialize PostgreSQL storage.

        Args:
            host: PostgreSQL server host
            port: PostgreSQL server port
            database: Database name
            user: Database user
            password: Database password
            pool_size: Minimum number of connections in pool
        """
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.pool_size = pool_size
        self._pool: ConnectionPool | None = None

    def connect(self) -> None:
        """Open the connection pool and create the table if needed."""
        if self._pool is not None:
            return
        conninfo = (
            f"host={self.host} port={self.port} dbname={self.database} "
            f"user={self.user} password={self.password}"
        )
        try:
            self._pool = ConnectionPool(
                conninfo, min_size=self.pool_size, max_size=self.pool_size + 2, open=True
            )
            with self._pool.connection() as conn:
                conn.execute(SCHEMA)
        except psycopg.Error as e:
            self.close()
            raise StorageConnectionError(f"Failed to connect to PostgreSQL: {e}") from e

    def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            self._pool.close()
            self._pool = None

    def _run(self, query: str, params: tuple[Any, ...] = ()) -> list[tuple]:
        if self._pool is None:
            self.connect()
        with self._pool.connection() as conn:
            cursor = conn.execute(query, params)
            return cursor.fetchall() if cursor.description else []

    def get_item(self, key: str) -> str | None:
        try:
            rows = self._run("SELECT value FROM kv_store WHERE key = %s", (key,))
        except psycopg.Error as e:
            raise StorageReadError(f"Failed to read {key}: {e}") from e
        return rows[0][0] if rows else None

    def set_item(self, key: str, value: str) -> None:
        try:
            self._run(
                """
                INSERT INTO kv_store (key, value) VALUES (%s, %s)
                ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = now()
                """,
                (key, value),
            )
        except psycopg.Error as e:
            raise StorageWriteError(f"Failed to write {key}: {e}") from e

    def remove_item(self, key: str) -> None:
        try:
            self._run("DELETE FROM kv_store WHERE key = %s", (key,))
        except psycopg.Error as e:
            raise StorageWriteError(f"Failed to remove {key}: {e}") from e

    def keys(self) -> list[str]:
        try:
            rows = self._run("SELECT key FROM kv_store ORDER BY key")
        except psycopg.Error as e:
            raise StorageReadError(f"Failed to list keys: {e}") from e
        return [row[0] for row in rows]
