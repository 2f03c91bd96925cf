"""Abstract key-value storage interface.

The timeline store persists two independent values (the item list and the
retry queue) as JSON text. Every backend implements this interface so the
store never depends on where the text ends up.
"""

from abc import ABC, abstractmethod


class KeyValueStorage(ABC):
    """Durable string key-value storage.

    Writes overwrite the whole value for a key. No transactions span keys.
    """

    def connect(self) -> None:
        """Open the backend. Backends that need no connection do nothing.

        Raises:
            StorageConnectionError: If the backend cannot be opened
        """
        pass

    def close(self) -> None:
        """Release the backend's resources."""
        pass

    @abstractmethod
    def get_item(self, key: str) -> str | None:
        """Read the value stored under key.

        Args:
            key: Storage key

        Returns:
            Stored text, or None if the key is absent

        Raises:
            StorageReadError: If the read fails
        """
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value.

        Args:
            key: Storage key
            value: Text to store (JSON for the timeline store)

        Raises:
            StorageWriteError: If the write fails
        """
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove key. Removing an absent key is not an error.

        Raises:
            StorageWriteError: If the removal fails
        """
        pass

    @abstractmethod
    def keys(self) -> list[str]:
        """List stored keys in sorted order.

        Raises:
            StorageReadError: If listing fails
        """
        pass

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
        return False
