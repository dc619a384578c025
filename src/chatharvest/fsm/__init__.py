"""Run state machine and tick scheduling."""

from .control import RunControl
from .machine import (
    ANCHOR_UNREACHABLE,
    INVALID_RUN_STATE,
    QUEUE_MISSING,
    MachineConfig,
    RunStateMachine,
    TickResult,
    Trigger,
)
from .triggers import TickDriver

__all__ = [
    "ANCHOR_UNREACHABLE",
    "INVALID_RUN_STATE",
    "QUEUE_MISSING",
    "MachineConfig",
    "RunControl",
    "RunStateMachine",
    "TickDriver",
    "TickResult",
    "Trigger",
]
