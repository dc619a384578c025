"""Captured records, turns and index entries."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common import utc_now


class Role(str, Enum):
    """Author of a turn."""

    USER = "user"
    ASSISTANT = "assistant"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: Any) -> "Role":
        """Map any raw role string onto a known role."""
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


class RecordStatus(str, Enum):
    """Outcome of processing one item."""

    OK = "OK"
    EMPTY = "EMPTY"
    TIMEOUT = "TIMEOUT"


class Turn(BaseModel):
    """One message in presentation order."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0)
    role: Role = Role.UNKNOWN
    text: str

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> Role:
        return Role.coerce(value)

    @property
    def dedup_key(self) -> tuple[str, str]:
        """Identity used to drop exact repeats."""
        return (self.role.value, self.text)


class Record(BaseModel):
    """Immutable capture of one item, identified by ``item_id``."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    url: str = ""
    label: str = ""
    captured_at: datetime = Field(default_factory=utc_now)
    turns: tuple[Turn, ...] = ()
    status: RecordStatus
    evidence: dict[str, Any] = Field(default_factory=dict)

    @property
    def turn_count(self) -> int:
        return len(self.turns)

    @property
    def char_count(self) -> int:
        return sum(len(turn.text) for turn in self.turns)

    @property
    def has_text(self) -> bool:
        """True if at least one turn has non-whitespace text."""
        return any(turn.text.strip() for turn in self.turns)


class IndexEntry(BaseModel):
    """Summary of a record, upserted by ``item_id``."""

    item_id: str
    url: str = ""
    label: str = ""
    status: RecordStatus
    turn_count: int = 0
    captured_at: datetime
    artifacts: list[str] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: Record, artifacts: list[str] | None = None) -> "IndexEntry":
        return cls(
            item_id=record.item_id,
            url=record.url,
            label=record.label,
            status=record.status,
            turn_count=record.turn_count,
            captured_at=record.captured_at,
            artifacts=list(artifacts or []),
        )
