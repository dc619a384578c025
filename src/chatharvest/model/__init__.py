"""Data model for chatharvest runs."""

from .common import new_run_id, utc_now
from .item_ref import UNTITLED, ItemRef, canonical_item_id, canonicalize_url, clean_label
from .ledger_event import LedgerEvent, LedgerEventType
from .record import IndexEntry, Record, RecordStatus, Role, Turn
from .run_state import ACTIVE_PHASES, RUN_STATE_SCHEMA, FailureEvent, Phase, RunState

__all__ = [
    "ACTIVE_PHASES",
    "RUN_STATE_SCHEMA",
    "UNTITLED",
    "FailureEvent",
    "IndexEntry",
    "ItemRef",
    "LedgerEvent",
    "LedgerEventType",
    "Phase",
    "Record",
    "RecordStatus",
    "Role",
    "RunState",
    "Turn",
    "canonical_item_id",
    "canonicalize_url",
    "clean_label",
    "new_run_id",
    "utc_now",
]
