"""Environment configuration interface for the timeline store.

All environment variable access for the store, its storage backends and the
upload client lives here.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


def _optional_float(name: str) -> float | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    return float(value)


class Environment:
    """Interface for accessing environment configuration."""

    @staticmethod
    def api_base_url() -> str:
        """Get the upload API base URL.

        Returns:
            Base URL without trailing slash, defaults to http://localhost:8080
        """
        return os.getenv("TIMELINE_API_BASE_URL", "http://localhost:8080").rstrip("/")

    @staticmethod
    def http_timeout() -> float | None:
        """Get the per-request HTTP timeout in seconds.

        Returns:
            Timeout in seconds, or None (no timeout) when unset
        """
        return _optional_float("TIMELINE_HTTP_TIMEOUT")

    @staticmethod
    def storage_type() -> str:
        """Get the storage backend type (memory, json, sqlite or postgresql).

        Returns:
            Storage type, defaults to 'json'
        """
        return os.getenv("TIMELINE_STORAGE_TYPE", "json")

    @staticmethod
    def storage_path() -> Path:
        """Get the storage location for file based backends.

        For 'json' this is a directory, for 'sqlite' a database file.

        Returns:
            Storage path, defaults to ./data/timeline
        """
        return Path(os.getenv("TIMELINE_STORAGE_PATH", "./data/timeline"))

    @staticmethod
    def postgres_host() -> str:
        """Get PostgreSQL host.

        Returns:
            PostgreSQL host, defaults to 'localhost'
        """
        return os.getenv("POSTGRES_HOST", "localhost")

    @staticmethod
    def postgres_port() -> int:
        """Get PostgreSQL port.

        Returns:
            PostgreSQL port, defaults to 5432
        """
        return int(os.getenv("POSTGRES_PORT", "5432"))

    @staticmethod
    def postgres_database() -> str:
        """Get PostgreSQL database name.

        Returns:
            Database name, defaults to 'lifestory'
        """
        return os.getenv("POSTGRES_DB", "lifestory")

    @staticmethod
    def postgres_user() -> str:
        """Get PostgreSQL user.

        Returns:
            Database user, defaults to 'lifestory_user'
        """
        return os.getenv("POSTGRES_USER", "lifestory_user")

    @staticmethod
    def postgres_password() -> str:
        """Get PostgreSQL password.

        Returns:
            Database password, defaults to empty string
        """
        return os.getenv("POSTGRES_PASSWORD", "")

    @staticmethod
    def postgres_pool_size() -> int:
        """Get PostgreSQL connection pool size.

        Returns:
            Pool size, defaults to 1
        """
        return int(os.getenv("POSTGRES_POOL_SIZE", "1"))

    @staticmethod
    def max_retries() -> int:
        """Get the number of automatic retries for transient upload failures.

        Returns:
            Retry ceiling, defaults to 3
        """
        return int(os.getenv("TIMELINE_MAX_RETRIES", "3"))

    @staticmethod
    def retry_base_delay() -> float:
        """Get the base backoff delay in seconds.

        Returns:
            Base delay, defaults to 5.0 (so 5s, 10s, 20s)
        """
        return float(os.getenv("TIMELINE_RETRY_BASE_DELAY", "5"))

    @staticmethod
    def retry_interval() -> float:
        """Get the period of the retry queue cycle in seconds.

        Returns:
            Cycle period, defaults to 30.0
        """
        return float(os.getenv("TIMELINE_RETRY_INTERVAL", "30"))

    @staticmethod
    def poll_interval() -> float:
        """Get the delay between transcription status polls in seconds.

        Returns:
            Poll interval, defaults to 3.0
        """
        return float(os.getenv("TIMELINE_POLL_INTERVAL", "3"))

    @staticmethod
    def poll_error_delay() -> float:
        """Get the delay before polling again after a poll error.

        Returns:
            Delay in seconds, defaults to 5.0
        """
        return float(os.getenv("TIMELINE_POLL_ERROR_DELAY", "5"))

    @staticmethod
    def transcription_timeout() -> float:
        """Get the maximum time to wait for a transcription to finish.

        Returns:
            Timeout in seconds, defaults to 600.0. Zero disables the bound.
        """
        return float(os.getenv("TIMELINE_TRANSCRIPTION_TIMEOUT", "600"))


# Singleton instance for convenient access
env = Environment()
