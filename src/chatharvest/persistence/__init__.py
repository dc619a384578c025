"""Persistence layer: run store, ledger and record index."""

from .file_storage import FileStorage
from .kv_store import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from .ledger import JsonlLedgerBackend, Ledger, LedgerBackend, MemoryLedgerBackend
from .record_index import RECORD_INDEX_KEY, RecordIndex
from .run_store import RUN_STATE_KEY, RunStore
from .serializers import JsonSerializer, Serializer

__all__ = [
    "FileStorage",
    "FileKeyValueStore",
    "JsonSerializer",
    "JsonlLedgerBackend",
    "KeyValueStore",
    "Ledger",
    "LedgerBackend",
    "MemoryKeyValueStore",
    "MemoryLedgerBackend",
    "RECORD_INDEX_KEY",
    "RUN_STATE_KEY",
    "RecordIndex",
    "RunStore",
    "Serializer",
]
