"""Append-only ledger events."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .common import utc_now


class LedgerEventType(str, Enum):
    """Types of events written to the run ledger."""

    RUN_START = "RUN_START"
    DISCOVERY_START = "DISCOVERY_START"
    ENUMERATE_PROGRESS = "ENUMERATE_PROGRESS"
    DISCOVERY_COMPLETE = "DISCOVERY_COMPLETE"
    PHASE_TRANSITION = "PHASE_TRANSITION"
    NAVIGATE = "NAVIGATE"
    NAVIGATION_RETRY = "NAVIGATION_RETRY"
    CAPTURE_ATTEMPT = "CAPTURE_ATTEMPT"
    CHAT_COMPLETE = "CHAT_COMPLETE"
    CAPTURE_EMPTY = "CAPTURE_EMPTY"
    CAPTURE_TIMEOUT = "CAPTURE_TIMEOUT"
    SKIP_BUSY = "SKIP_BUSY"
    ITEM_FAILED = "ITEM_FAILED"
    SHARD_EXPORTED = "SHARD_EXPORTED"
    SINK_FAILED = "SINK_FAILED"
    STOP_REQUESTED = "STOP_REQUESTED"
    STOP_CLEARED = "STOP_CLEARED"
    FAIL_CLOSED = "FAIL_CLOSED"
    RUN_COMPLETE = "RUN_COMPLETE"
    REPAIR_PLAN = "REPAIR_PLAN"
    REPAIR_APPLIED = "REPAIR_APPLIED"


class LedgerEvent(BaseModel):
    """One immutable entry in the run ledger."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utc_now)
    run_id: str | None = None
    type: LedgerEventType
    payload: dict[str, Any] = Field(default_factory=dict)

    def to_json_line(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json_line(cls, line: str) -> "LedgerEvent":
        return cls.model_validate_json(line)
