"""Text formatting for CLI output."""

import json
from typing import Any


def format_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def format_status(summary: dict[str, Any]) -> str:
    """Human-readable run status.

    Args:
        summary: Output of ``RunControl.status()``

    Returns:
        Multi-line status text
    """
    if summary.get("run_id") is None:
        return "No run has been started."

    statuses = summary.get("statuses", {})
    lines = [
        f"Run:       {summary['run_id']}",
        f"Phase:     {summary['phase']}",
        f"Progress:  {summary['cursor']}/{summary['queue']}",
        "Records:   {captured} (OK {ok}, EMPTY {empty}, TIMEOUT {timeout})".format(
            captured=summary["captured"],
            ok=statuses.get("OK", 0),
            empty=statuses.get("EMPTY", 0),
            timeout=statuses.get("TIMEOUT", 0),
        ),
        f"Failures:  {summary['failures']} (sink: {summary['sink_failures']})",
    ]
    if summary.get("stop_requested"):
        lines.append("Stop:      requested")
    if summary.get("fail_reason"):
        lines.append(f"Failed:    {summary['fail_reason']}")
    if summary.get("last_event"):
        lines.append(f"Last:      {summary['last_event']}")
    return "\n".join(lines)


def format_repair_plan(plan: dict[str, Any]) -> str:
    mode = "dry run" if plan["dry_run"] else "applied"
    lines = [f"Repair ({mode}): {plan['remove_count']} of {plan['total_before']} record(s) invalid"]
    for entry in plan["invalid"]:
        lines.append(f"  - #{entry['index']} {entry['item_id'] or '<no id>'}: {entry['reason']}")
    if plan.get("applied"):
        lines.append(f"Records after repair: {plan['total_after']}")
    return "\n".join(lines)
