"""Explicit validation and repair of captured records.

Nothing here runs automatically. ``repair_records`` previews by default and
only removes records when called with ``dry_run=False``.
"""

from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

from ..exceptions import InvalidRunStateException
from ..logging import get_logger
from ..model import LedgerEventType, Phase, Record, RunState
from ..persistence import Ledger, RecordIndex, RunStore

logger = get_logger(__name__)

MISSING_ITEM_ID = "MISSING_ITEM_ID"
MISSING_TEXT = "MISSING_TEXT"


@dataclass
class InvalidRecord:
    """One problem found on a captured record."""

    index: int
    item_id: str | None
    reason: str
    turn_count: int = 0


@dataclass
class ValidationReport:
    total: int
    invalid: list[InvalidRecord] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.invalid

    @property
    def invalid_indexes(self) -> set[int]:
        return {entry.index for entry in self.invalid}

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "total": self.total,
            "invalid_count": len(self.invalid_indexes),
            "invalid": [asdict(entry) for entry in self.invalid],
        }


@dataclass
class RepairPlan:
    """Preview (and, when applied, outcome) of a repair."""

    dry_run: bool
    run_id: str | None
    total_before: int
    report: ValidationReport
    applied: bool = False
    total_after: int | None = None

    @property
    def remove_count(self) -> int:
        return len(self.report.invalid_indexes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "run_id": self.run_id,
            "total_before": self.total_before,
            "remove_count": self.remove_count,
            "applied": self.applied,
            "total_after": self.total_after,
            "invalid": [asdict(entry) for entry in self.report.invalid],
        }


def validate_records(records: Sequence[Record]) -> ValidationReport:
    """Classify records missing an item id or any non-blank text."""
    report = ValidationReport(total=len(records))
    for i, record in enumerate(records):
        item_id = record.item_id.strip() or None
        if item_id is None:
            report.invalid.append(
                InvalidRecord(index=i, item_id=None, reason=MISSING_ITEM_ID, turn_count=record.turn_count)
            )
        if not record.has_text:
            report.invalid.append(
                InvalidRecord(index=i, item_id=item_id, reason=MISSING_TEXT, turn_count=record.turn_count)
            )
    return report


def repair_records(
    store: RunStore,
    ledger: Ledger | None = None,
    *,
    dry_run: bool = True,
    index: RecordIndex | None = None,
) -> RepairPlan:
    """Plan, and optionally apply, removal of invalid records.

    Args:
        store: Run store holding the records
        ledger: Ledger receiving REPAIR_PLAN and REPAIR_APPLIED
        dry_run: Only preview when True
        index: Record index to prune alongside the run state

    Returns:
        RepairPlan

    Raises:
        InvalidRunStateException: If no run has been started
    """
    state = store.load()
    if state is None:
        raise InvalidRunStateException("no run state to repair")

    report = validate_records(state.captured)
    plan = RepairPlan(
        dry_run=dry_run,
        run_id=state.run_id,
        total_before=len(state.captured),
        report=report,
    )

    if ledger is not None:
        ledger.append(
            LedgerEventType.REPAIR_PLAN,
            {
                "dry_run": dry_run,
                "total_before": plan.total_before,
                "remove_count": plan.remove_count,
            },
            run_id=state.run_id,
        )

    if dry_run:
        return plan

    bad = report.invalid_indexes
    removed = [r for i, r in enumerate(state.captured) if i in bad]
    state.captured = [r for i, r in enumerate(state.captured) if i not in bad]
    store.save(state)

    if index is not None:
        for record in removed:
            if record.item_id.strip():
                index.remove(record.item_id)

    plan.applied = True
    plan.total_after = len(state.captured)

    if ledger is not None:
        ledger.append(
            LedgerEventType.REPAIR_APPLIED,
            {"removed": len(removed), "total_after": plan.total_after},
            run_id=state.run_id,
        )

    logger.info("repair_applied", run_id=state.run_id, removed=len(removed))
    return plan


def verify_report(state: RunState | None) -> dict[str, Any]:
    """Admissibility summary of a run.

    A run is admissible once it is DONE, every queue position has been
    processed and every record validates.
    """
    if state is None:
        return {"has_run": False, "admissible": False}

    report = validate_records(state.captured)
    processed = state.processed_count
    return {
        "has_run": True,
        "run_id": state.run_id,
        "phase": state.phase.value,
        "running": state.is_active,
        "terminal": state.is_terminal,
        "cursor": state.cursor,
        "queue": len(state.queue),
        "processed": processed,
        "failures": len(state.failures),
        "sink_failures": len(state.sink_failures),
        "statuses": state.status_counts(),
        "validation": report.to_dict(),
        "admissible": (
            state.phase is Phase.DONE and processed == len(state.queue) and report.ok
        ),
    }
