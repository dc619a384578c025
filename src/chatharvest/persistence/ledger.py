"""Append-only run ledger.

Events are never rewritten. The JSON Lines backend appends one event per line
and flushes on every write so a crash loses at most the event being written.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..exceptions import StorageReadException, StorageWriteException
from ..logging import get_logger
from ..model import LedgerEvent, LedgerEventType

logger = get_logger(__name__)


class LedgerBackend(ABC):
    """Storage for ledger events."""

    @abstractmethod
    def append(self, event: LedgerEvent) -> None:
        pass

    @abstractmethod
    def read_all(self) -> list[LedgerEvent]:
        pass


class MemoryLedgerBackend(LedgerBackend):
    """Keeps events in a list."""

    def __init__(self) -> None:
        self._events: list[LedgerEvent] = []

    def append(self, event: LedgerEvent) -> None:
        self._events.append(event)

    def read_all(self) -> list[LedgerEvent]:
        return list(self._events)


class JsonlLedgerBackend(LedgerBackend):
    """Appends events to a JSON Lines file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, event: LedgerEvent) -> None:
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(event.to_json_line() + "\n")
                f.flush()
        except OSError as e:
            raise StorageWriteException(key=self.path.stem, storage_type="JSONL", reason=str(e)) from e

    def read_all(self) -> list[LedgerEvent]:
        if not self.path.exists():
            return []

        events: list[LedgerEvent] = []
        try:
            with open(self.path, encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        events.append(LedgerEvent.from_json_line(line))
                    except ValidationError as e:
                        raise StorageReadException(
                            key=self.path.stem,
                            storage_type="JSONL",
                            reason=f"line {line_no}: {e.error_count()} validation error(s)",
                        ) from e
        except OSError as e:
            raise StorageReadException(key=self.path.stem, storage_type="JSONL", reason=str(e)) from e

        return events


class Ledger:
    """Append-only audit log of a harvesting run."""

    def __init__(self, backend: LedgerBackend | None = None, run_id: str | None = None) -> None:
        self.backend = backend or MemoryLedgerBackend()
        self.run_id = run_id

    @classmethod
    def jsonl(cls, path: Path, run_id: str | None = None) -> "Ledger":
        return cls(JsonlLedgerBackend(path), run_id=run_id)

    def bind(self, run_id: str) -> None:
        """Attach subsequent events to ``run_id``."""
        self.run_id = run_id

    def append(
        self,
        event_type: LedgerEventType | str,
        payload: dict[str, Any] | None = None,
        run_id: str | None = None,
    ) -> LedgerEvent:
        """Append one event.

        Args:
            event_type: Event type
            payload: JSON-compatible event details
            run_id: Overrides the bound run id

        Returns:
            The stored event
        """
        event = LedgerEvent(
            run_id=run_id or self.run_id,
            type=LedgerEventType(event_type),
            payload=dict(payload or {}),
        )
        self.backend.append(event)
        logger.debug("ledger_event", type=event.type.value, run_id=event.run_id)
        return event

    def events(
        self,
        run_id: str | None = None,
        event_type: LedgerEventType | str | None = None,
    ) -> list[LedgerEvent]:
        """Events in append order, optionally filtered."""
        events = self.backend.read_all()
        if run_id is not None:
            events = [e for e in events if e.run_id == run_id]
        if event_type is not None:
            wanted = LedgerEventType(event_type)
            events = [e for e in events if e.type is wanted]
        return events

    def last(self, run_id: str | None = None) -> LedgerEvent | None:
        events = self.events(run_id=run_id)
        return events[-1] if events else None

    def __len__(self) -> int:
        return len(self.backend.read_all())
