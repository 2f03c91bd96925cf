"""JSON file storage backend.

Each key is written to its own file inside a directory, replaced atomically
so a crash mid-write leaves the previous value intact.
"""

import json
import os
import re
import tempfile
from pathlib import Path

from .interface import KeyValueStorage
from .types import StorageConnectionError, StorageReadError, StorageWriteError


class JSONFileStorage(KeyValueStorage):
    """Directory of ``<key>.json`` files.

    Each file holds ``{"key": ..., "value": ...}`` so the original key can be
    recovered even though file names are sanitized.
    """

    def __init__(self, directory: str | Path):
        """Initialize JSON file storage.

        Args:
            directory: Directory holding one file per key (created on connect)
        """
        self.directory = Path(directory)

    def connect(self) -> None:
        """Create the storage directory if needed."""
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageConnectionError(
                f"Failed to create storage directory {self.directory}: {e}"
            ) from e

    def _path_for(self, key: str) -> Path:
        name = re.sub(r"[^A-Za-z0-9_.-]", "_", key.lstrip("@")) or "_"
        return self.directory / f"{name}.json"

    def get_item(self, key: str) -> str | None:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                record = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageReadError(f"Failed to read {path}: {e}") from e
        return record.get("value")

    def set_item(self, key: str, value: str) -> None:
        path = self._path_for(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump({"key": key, "value": value}, f)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageWriteError(f"Failed to write {path}: {e}") from e

    def remove_item(self, key: str) -> None:
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageWriteError(f"Failed to remove {key}: {e}") from e

    def keys(self) -> list[str]:
        if not self.directory.exists():
            return []
        found = []
        try:
            for path in self.directory.glob("*.json"):
                with open(path, encoding="utf-8") as f:
                    found.append(json.load(f)["key"])
        except (OSError, ValueError, KeyError) as e:
            raise StorageReadError(f"Failed to list keys in {self.directory}: {e}") from e
        return sorted(found)
