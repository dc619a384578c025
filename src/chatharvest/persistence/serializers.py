"""Serialization handlers for persisted documents.

JSON is the only on-disk format: run state, index and exports must stay
readable by other tools.
"""

import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from ..exceptions import StorageReadException, StorageWriteException
from ..logging import get_logger

logger = get_logger(__name__)


class Serializer(ABC):
    """Base interface for data serializers."""

    @abstractmethod
    def serialize(self, data: Any, path: Path) -> None:
        """Serialize data to file.

        Args:
            data: Data to serialize
            path: Target file path

        Raises:
            StorageWriteException: If serialization fails
        """
        pass

    @abstractmethod
    def deserialize(self, path: Path) -> Any:
        """Deserialize data from file.

        Args:
            path: Source file path

        Returns:
            Deserialized data

        Raises:
            StorageReadException: If deserialization fails
        """
        pass

    @property
    @abstractmethod
    def file_extension(self) -> str:
        """Get the file extension for this serializer."""
        pass


class JsonSerializer(Serializer):
    """JSON serialization handler with replace-on-write."""

    def __init__(self, indent: int | None = 2, ensure_ascii: bool = False) -> None:
        """Initialize JSON serializer.

        Args:
            indent: Indentation level for pretty printing
            ensure_ascii: Whether to escape non-ASCII characters
        """
        self.indent = indent
        self.ensure_ascii = ensure_ascii

    def dumps(self, data: Any) -> str:
        return json.dumps(data, indent=self.indent, ensure_ascii=self.ensure_ascii, default=str)

    def serialize(self, data: Any, path: Path) -> None:
        """Serialize data to a JSON file.

        The document is written to a sibling temp file and moved into place, so
        readers never observe a half-written file.

        Raises:
            StorageWriteException: If serialization fails
        """
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            text = self.dumps(data)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)

            logger.debug("json_serialized", path=str(path), size=len(text))

        except (OSError, TypeError, ValueError) as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageWriteException(key=path.stem, storage_type="JSON", reason=str(e)) from e

    def deserialize(self, path: Path) -> Any:
        """Deserialize data from a JSON file.

        Raises:
            StorageReadException: If deserialization fails
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)

            logger.debug("json_deserialized", path=str(path))

            return data

        except (OSError, ValueError) as e:
            raise StorageReadException(key=path.stem, storage_type="JSON", reason=str(e)) from e

    @property
    def file_extension(self) -> str:
        """Get the file extension for JSON files."""
        return ".json"
