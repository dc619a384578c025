"""Stability-gated list enumeration."""

from .enumerator import (
    NO_CONTAINER_FOUND,
    STOPPED,
    EnumerationResult,
    EnumeratorConfig,
    StabilityGatedEnumerator,
    low_count_reason,
)

__all__ = [
    "NO_CONTAINER_FOUND",
    "STOPPED",
    "EnumerationResult",
    "EnumeratorConfig",
    "StabilityGatedEnumerator",
    "low_count_reason",
]
