"""chatharvest: resumable harvesting of virtualized conversation lists.

A run enumerates every item of a virtualized list (failing closed when the
list cannot be proven complete), then visits each item, waits for its content
to stabilize and captures it. Progress lives in a persistent run store, so a
run survives page reloads and process restarts.
"""

from .capture import Capture, export_json, export_markdown, repair_records, shard_turns, verify_report
from .config import HarvestSettings, get_settings
from .enumeration import EnumerationResult, EnumeratorConfig, StabilityGatedEnumerator
from .exceptions import ErrorKind, HarvestException
from .fsm import MachineConfig, RunControl, RunStateMachine, TickDriver, TickResult, Trigger
from .model import ItemRef, LedgerEvent, Phase, Record, RecordStatus, RunState, Turn
from .persistence import FileKeyValueStore, Ledger, MemoryKeyValueStore, RecordIndex, RunStore
from .stabilization import ContentStabilizationGate, GateConfig, GateResult

__version__ = "0.1.0"

__all__ = [
    "Capture",
    "ContentStabilizationGate",
    "EnumerationResult",
    "EnumeratorConfig",
    "ErrorKind",
    "FileKeyValueStore",
    "GateConfig",
    "GateResult",
    "HarvestException",
    "HarvestSettings",
    "ItemRef",
    "Ledger",
    "LedgerEvent",
    "MachineConfig",
    "MemoryKeyValueStore",
    "Phase",
    "Record",
    "RecordIndex",
    "RecordStatus",
    "RunControl",
    "RunState",
    "RunStateMachine",
    "RunStore",
    "StabilityGatedEnumerator",
    "TickDriver",
    "TickResult",
    "Trigger",
    "Turn",
    "export_json",
    "export_markdown",
    "get_settings",
    "repair_records",
    "shard_turns",
    "verify_report",
]
