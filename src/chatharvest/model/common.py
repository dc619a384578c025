"""Shared helpers for model timestamps and identifiers."""

import uuid
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_run_id() -> str:
    """Run identifier that sorts by start time."""
    return f"run_{utc_now().strftime('%Y%m%dT%H%M%S')}_{uuid.uuid4().hex[:8]}"
