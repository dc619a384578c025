"""Run state: the single value owned by the run state machine.

RunState is the only entity guaranteed to outlive a reload. It is read at the
start of every tick and written after every transition.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from ..exceptions import ErrorKind
from .common import new_run_id, utc_now
from .item_ref import ItemRef
from .record import Record, RecordStatus

RUN_STATE_SCHEMA = "chatharvest.run.v1"


class Phase(str, Enum):
    """Run state machine phases."""

    IDLE = "IDLE"
    DISCOVER = "DISCOVER"
    OPEN_ITEM = "OPEN_ITEM"
    IN_ITEM = "IN_ITEM"
    RETURN = "RETURN"
    DONE = "DONE"
    FAIL = "FAIL"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.DONE, Phase.FAIL)

    @property
    def is_active(self) -> bool:
        """Phases a cold resume re-enters."""
        return self in ACTIVE_PHASES


ACTIVE_PHASES = frozenset({Phase.DISCOVER, Phase.OPEN_ITEM, Phase.IN_ITEM, Phase.RETURN})


class FailureEvent(BaseModel):
    """A terminal failure of one item, or of one artifact write."""

    item_id: str | None = None
    kind: ErrorKind
    phase: Phase
    reason: str
    cursor: int | None = None
    timestamp: datetime = Field(default_factory=utc_now)
    context: dict[str, Any] = Field(default_factory=dict)


class RunState(BaseModel):
    """Persisted progress of one harvesting run.

    ``failures`` holds per-item terminal failures that produced no Record, so
    ``len(captured) + len(failures)`` counts processed queue positions.
    Delivery failures are kept apart in ``sink_failures``.
    """

    schema_version: str = RUN_STATE_SCHEMA
    run_id: str = Field(default_factory=new_run_id)
    phase: Phase = Phase.IDLE
    cursor: int = Field(0, ge=0)
    queue: list[ItemRef] = Field(default_factory=list)
    captured: list[Record] = Field(default_factory=list)
    failures: list[FailureEvent] = Field(default_factory=list)
    sink_failures: list[FailureEvent] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: datetime | None = None
    anchor: str | None = None
    stop_requested: bool = False
    nav_attempts: int = Field(0, ge=0)
    fail_reason: str | None = None

    @model_validator(mode="after")
    def _cursor_within_queue(self) -> "RunState":
        if self.cursor > len(self.queue):
            raise ValueError(f"cursor {self.cursor} exceeds queue length {len(self.queue)}")
        return self

    @classmethod
    def new(cls, anchor: str | None = None) -> "RunState":
        """Fresh run that has not entered discovery yet."""
        return cls(phase=Phase.IDLE, anchor=anchor)

    @property
    def is_terminal(self) -> bool:
        return self.phase.is_terminal

    @property
    def is_active(self) -> bool:
        return self.phase.is_active

    @property
    def current_item(self) -> ItemRef | None:
        if self.cursor < len(self.queue):
            return self.queue[self.cursor]
        return None

    @property
    def processed_count(self) -> int:
        return len(self.captured) + len(self.failures)

    def record_for(self, item_id: str) -> Record | None:
        for record in self.captured:
            if record.item_id == item_id:
                return record
        return None

    def upsert_record(self, record: Record) -> bool:
        """Store ``record``, replacing an earlier capture of the same item.

        Returns:
            True if an existing record was replaced
        """
        for i, existing in enumerate(self.captured):
            if existing.item_id == record.item_id:
                self.captured[i] = record
                return True
        self.captured.append(record)
        return False

    def status_counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in RecordStatus}
        for record in self.captured:
            counts[record.status.value] += 1
        return counts

    def summary(self) -> dict[str, Any]:
        """Compact description for status output and ledger payloads."""
        return {
            "run_id": self.run_id,
            "phase": self.phase.value,
            "cursor": self.cursor,
            "queue": len(self.queue),
            "captured": len(self.captured),
            "failures": len(self.failures),
            "sink_failures": len(self.sink_failures),
            "statuses": self.status_counts(),
            "stop_requested": self.stop_requested,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
