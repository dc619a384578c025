"""Content stabilization gate."""

from .gate import (
    NEVER_STABILIZED,
    ContentStabilizationGate,
    GateConfig,
    GateResult,
    QuiescenceResult,
    StableValueResult,
)

__all__ = [
    "NEVER_STABILIZED",
    "ContentStabilizationGate",
    "GateConfig",
    "GateResult",
    "QuiescenceResult",
    "StableValueResult",
]
