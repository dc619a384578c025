"""Key-value stores backing the persistent run store.

Both stores hold JSON-compatible documents. The memory store keeps them as
JSON text so that a document read back has been through the same encoding as
one read from disk.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from ..exceptions import StorageReadException, StorageWriteException
from .file_storage import FileStorage


class KeyValueStore(ABC):
    """Process-wide store that survives reloads of the running view."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the document stored under ``key`` or ``default``."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a JSON-compatible document under ``key``."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove ``key``; True if it existed."""

    @abstractmethod
    def keys(self) -> list[str]:
        pass


class MemoryKeyValueStore(KeyValueStore):
    """In-process store, for tests and single-process runs."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError as e:
            raise StorageReadException(key=key, storage_type="memory", reason=str(e)) from e

    def set(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            raise StorageWriteException(key=key, storage_type="memory", reason=str(e)) from e

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        return sorted(self._data)


class FileKeyValueStore(KeyValueStore):
    """Durable store with one JSON document per key."""

    def __init__(self, base_path: Path | None = None, storage: FileStorage | None = None) -> None:
        self.storage = storage or FileStorage(base_path=base_path)

    @property
    def base_path(self) -> Path:
        return self.storage.base_path

    def get(self, key: str, default: Any = None) -> Any:
        return self.storage.load(key, default=default)

    def set(self, key: str, value: Any) -> None:
        self.storage.save(key, value)

    def delete(self, key: str) -> bool:
        return self.storage.delete(key)

    def keys(self) -> list[str]:
        return self.storage.list_keys()
