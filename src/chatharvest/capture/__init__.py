"""Capture, sharding, repair and export of records."""

from .capture import Capture, HydrationConfig, classify, dedup_turns
from .export import EXPORT_SCHEMA, export_json, export_markdown
from .repair import (
    MISSING_ITEM_ID,
    MISSING_TEXT,
    InvalidRecord,
    RepairPlan,
    ValidationReport,
    repair_records,
    validate_records,
    verify_report,
)
from .sharding import shard_turns

__all__ = [
    "Capture",
    "HydrationConfig",
    "classify",
    "dedup_turns",
    "EXPORT_SCHEMA",
    "export_json",
    "export_markdown",
    "MISSING_ITEM_ID",
    "MISSING_TEXT",
    "InvalidRecord",
    "RepairPlan",
    "ValidationReport",
    "repair_records",
    "validate_records",
    "verify_report",
    "shard_turns",
]
