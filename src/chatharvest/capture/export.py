"""Whole-run export as JSON or Markdown."""

from typing import Any

from ..model import Record, RecordStatus, RunState
from ..persistence import Ledger
from .repair import validate_records

EXPORT_SCHEMA = "chatharvest.export.v1"


def _record_warnings(record: Record, min_turns_warn: int) -> list[str]:
    warnings = []
    if record.status is not RecordStatus.OK:
        warnings.append(f"status {record.status.value}")
    elif record.turn_count < min_turns_warn:
        warnings.append(f"only {record.turn_count} turn(s)")
    return warnings


def export_json(
    state: RunState,
    ledger: Ledger | None = None,
    min_turns_warn: int = 2,
) -> dict[str, Any]:
    """JSON-compatible payload holding the whole run.

    Args:
        state: Run to export
        ledger: Ledger whose events for this run are included
        min_turns_warn: Records with fewer turns are listed under warnings

    Returns:
        Export payload
    """
    warnings = []
    for record in state.captured:
        for message in _record_warnings(record, min_turns_warn):
            warnings.append({"item_id": record.item_id, "label": record.label, "warning": message})

    payload: dict[str, Any] = {
        "schema": EXPORT_SCHEMA,
        "run": state.summary(),
        "counts": {
            "queue": len(state.queue),
            "records": len(state.captured),
            "failures": len(state.failures),
            "sink_failures": len(state.sink_failures),
            **state.status_counts(),
        },
        "validation": validate_records(state.captured).to_dict(),
        "warnings": warnings,
        "records": [record.model_dump(mode="json") for record in state.captured],
        "failures": [failure.model_dump(mode="json") for failure in state.failures],
    }
    if ledger is not None:
        payload["ledger"] = [
            event.model_dump(mode="json") for event in ledger.events(run_id=state.run_id)
        ]
    return payload


def export_markdown(state: RunState) -> str:
    """Markdown document with one section per record."""
    lines = [
        f"# Harvest {state.run_id}",
        "",
        f"- Phase: {state.phase.value}",
        f"- Started: {state.started_at.isoformat()}",
        f"- Records: {len(state.captured)} of {len(state.queue)}",
        f"- Failures: {len(state.failures)}",
        "",
    ]

    for record in state.captured:
        lines.append(f"## {record.label}")
        lines.append("")
        lines.append(f"- Item: `{record.item_id}`")
        if record.url:
            lines.append(f"- URL: {record.url}")
        lines.append(f"- Status: {record.status.value}")
        lines.append(f"- Captured: {record.captured_at.isoformat()}")
        lines.append("")
        for turn in record.turns:
            lines.append(f"**{turn.role.value}**")
            lines.append("")
            lines.append(turn.text)
            lines.append("")

    if state.failures:
        lines.append("## Failures")
        lines.append("")
        for failure in state.failures:
            lines.append(f"- `{failure.item_id}` {failure.kind.value}: {failure.reason}")
        lines.append("")

    return "\n".join(lines)
