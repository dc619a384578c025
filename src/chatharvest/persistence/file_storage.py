"""File-based storage backend.

Documents are stored one per key under a base path, with optional backups of
the previous version.
"""

import shutil
from datetime import datetime
from pathlib import Path
from typing import Any

from ..config import get_settings
from ..logging import get_logger
from .serializers import JsonSerializer, Serializer

logger = get_logger(__name__)


class FileStorage:
    """File-based storage with backup support.

    Features:
        - Automatic directory creation
        - Atomic replace-on-write (through the serializer)
        - Optional backups of overwritten documents
    """

    def __init__(
        self,
        base_path: Path | None = None,
        default_serializer: Serializer | None = None,
    ) -> None:
        """Initialize file storage.

        Args:
            base_path: Base path for storage (defaults to settings)
            default_serializer: Default serializer to use (defaults to JSON)
        """
        settings = get_settings()
        self.base_path: Path = Path(base_path or settings.data_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

        self.default_serializer = default_serializer or JsonSerializer()
        self.backups_path = self.base_path / "backups"

        logger.debug("file_storage_initialized", base_path=str(self.base_path))

    def path_for(self, key: str, subfolder: str = "", serializer: Serializer | None = None) -> Path:
        serializer = serializer or self.default_serializer
        return self._resolve_folder(subfolder) / f"{key}{serializer.file_extension}"

    def save(
        self,
        key: str,
        data: Any,
        subfolder: str = "",
        serializer: Serializer | None = None,
        backup: bool = False,
    ) -> Path:
        """Save data to file.

        Args:
            key: Storage key/filename (without extension)
            data: Data to save
            subfolder: Optional subfolder within base path
            serializer: Serializer to use (defaults to default_serializer)
            backup: Create backup of existing file

        Returns:
            Path where data was saved
        """
        serializer = serializer or self.default_serializer

        path = self.path_for(key, subfolder, serializer)
        path.parent.mkdir(parents=True, exist_ok=True)

        if backup and path.exists():
            self._create_backup(path)

        serializer.serialize(data, path)

        return path

    def load(
        self,
        key: str,
        subfolder: str = "",
        serializer: Serializer | None = None,
        default: Any = None,
    ) -> Any:
        """Load data from file.

        Args:
            key: Storage key/filename (without extension)
            subfolder: Optional subfolder within base path
            serializer: Serializer to use (defaults to default_serializer)
            default: Value returned when the file does not exist

        Returns:
            Loaded data or default value

        Raises:
            StorageReadException: If the file exists but cannot be read
        """
        serializer = serializer or self.default_serializer
        path = self.path_for(key, subfolder, serializer)

        if not path.exists():
            return default

        return serializer.deserialize(path)

    def delete(self, key: str, subfolder: str = "") -> bool:
        """Delete stored file.

        Returns:
            True if deleted, False if not found
        """
        path = self.path_for(key, subfolder)
        if path.exists():
            path.unlink()
            logger.debug("file_deleted", path=str(path))
            return True

        return False

    def exists(self, key: str, subfolder: str = "") -> bool:
        return self.path_for(key, subfolder).exists()

    def list_keys(self, subfolder: str = "") -> list[str]:
        folder = self._resolve_folder(subfolder)
        if not folder.exists():
            return []
        pattern = f"*{self.default_serializer.file_extension}"
        return sorted(path.stem for path in folder.glob(pattern))

    def _resolve_folder(self, subfolder: str) -> Path:
        return self.base_path / subfolder if subfolder else self.base_path

    def _create_backup(self, path: Path) -> Path:
        self.backups_path.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        backup_path = self.backups_path / f"{path.stem}_{timestamp}{path.suffix}"
        shutil.copy2(path, backup_path)
        logger.debug("backup_created", original=str(path), backup=str(backup_path))
        return backup_path
