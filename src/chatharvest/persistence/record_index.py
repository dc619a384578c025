"""Record index persisted alongside the run state."""

from pydantic import ValidationError

from ..exceptions import InvalidRunStateException
from ..model import IndexEntry
from .kv_store import KeyValueStore

RECORD_INDEX_KEY = "record_index"


class RecordIndex:
    """Summary entries keyed by item id.

    ``upsert`` replaces any existing entry for the same item, so re-capturing
    an item never produces a second entry.
    """

    def __init__(self, kv: KeyValueStore, key: str = RECORD_INDEX_KEY) -> None:
        self.kv = kv
        self.key = key

    def _load(self) -> dict[str, IndexEntry]:
        raw = self.kv.get(self.key, default={}) or {}
        try:
            return {item_id: IndexEntry.model_validate(data) for item_id, data in raw.items()}
        except ValidationError as e:
            raise InvalidRunStateException(str(e), key=self.key) from e

    def _save(self, entries: dict[str, IndexEntry]) -> None:
        self.kv.set(
            self.key,
            {item_id: entry.model_dump(mode="json") for item_id, entry in entries.items()},
        )

    def upsert(self, entry: IndexEntry) -> bool:
        """Insert or replace the entry for ``entry.item_id``.

        Returns:
            True if an existing entry was replaced
        """
        entries = self._load()
        replaced = entry.item_id in entries
        entries[entry.item_id] = entry
        self._save(entries)
        return replaced

    def get(self, item_id: str) -> IndexEntry | None:
        return self._load().get(item_id)

    def remove(self, item_id: str) -> bool:
        entries = self._load()
        if entries.pop(item_id, None) is None:
            return False
        self._save(entries)
        return True

    def entries(self) -> list[IndexEntry]:
        return list(self._load().values())

    def clear(self) -> None:
        self.kv.delete(self.key)

    def __len__(self) -> int:
        return len(self._load())
