"""Exception hierarchy for chatharvest.

Run-level failures (enumeration) halt the run and require an explicit
restart. Item-level failures (navigation stall, busy timeout, capture
failure, sink failure) are ledgered and never halt the run.
"""

from enum import Enum

from .base_exceptions import HarvestException


class ErrorKind(str, Enum):
    """Failure taxonomy used in ledger events and FailureEvents."""

    ENUMERATION_FAILURE = "ENUMERATION_FAILURE"
    NAVIGATION_STALL = "NAVIGATION_STALL"
    BUSY_TIMEOUT = "BUSY_TIMEOUT"
    CAPTURE_EMPTY = "CAPTURE_EMPTY"
    CAPTURE_TIMEOUT = "CAPTURE_TIMEOUT"
    SINK_FAILURE = "SINK_FAILURE"


class EnumerationFailure(HarvestException):
    """Raised when the item list could not be fully enumerated."""

    def __init__(self, reason: str, **kwargs) -> None:
        """Initialize with the fail-closed reason (e.g. ``LOW_COUNT_2``)."""
        super().__init__(
            f"Enumeration failed closed: {reason}",
            error_code=ErrorKind.ENUMERATION_FAILURE.value,
            context={"reason": reason, **kwargs},
        )
        self.reason = reason


class NavigationStall(HarvestException):
    """Raised when a target view never becomes current."""

    def __init__(self, target: str, attempts: int, **kwargs) -> None:
        """Initialize with navigation target and attempt count."""
        super().__init__(
            f"View for '{target}' did not become current after {attempts} attempt(s)",
            error_code=ErrorKind.NAVIGATION_STALL.value,
            context={"target": target, "attempts": attempts, **kwargs},
        )


class BusyTimeout(HarvestException):
    """Raised when a view stays busy past its wait budget."""

    def __init__(self, item_id: str, budget_ms: int, **kwargs) -> None:
        """Initialize with item id and exhausted budget."""
        super().__init__(
            f"Item '{item_id}' still busy after {budget_ms}ms",
            error_code=ErrorKind.BUSY_TIMEOUT.value,
            context={"item_id": item_id, "budget_ms": budget_ms, **kwargs},
        )


class CaptureFailure(HarvestException):
    """Raised when content could not be read from a view."""

    def __init__(self, item_id: str, reason: str, **kwargs) -> None:
        """Initialize with item id and reason."""
        super().__init__(
            f"Capture failed for '{item_id}': {reason}",
            error_code="CAPTURE_FAILED",
            context={"item_id": item_id, "reason": reason, **kwargs},
        )


class SinkFailure(HarvestException):
    """Raised when an external artifact write fails."""

    def __init__(self, item_id: str, reason: str, **kwargs) -> None:
        """Initialize with item id and reason."""
        super().__init__(
            f"Artifact write failed for '{item_id}': {reason}",
            error_code=ErrorKind.SINK_FAILURE.value,
            context={"item_id": item_id, "reason": reason, **kwargs},
        )


class StorageException(HarvestException):
    """Base exception for storage/persistence errors."""

    pass


class StorageReadException(StorageException):
    """Raised when reading from storage fails."""

    def __init__(self, key: str, storage_type: str, reason: str, **kwargs) -> None:
        """Initialize with read details."""
        super().__init__(
            f"Failed to read '{key}' from {storage_type}: {reason}",
            error_code="STORAGE_READ_FAILED",
            context={
                "key": key,
                "storage_type": storage_type,
                "reason": reason,
                **kwargs,
            },
        )


class StorageWriteException(StorageException):
    """Raised when writing to storage fails."""

    def __init__(self, key: str, storage_type: str, reason: str, **kwargs) -> None:
        """Initialize with write details."""
        super().__init__(
            f"Failed to write '{key}' to {storage_type}: {reason}",
            error_code="STORAGE_WRITE_FAILED",
            context={
                "key": key,
                "storage_type": storage_type,
                "reason": reason,
                **kwargs,
            },
        )


class InvalidRunStateException(HarvestException):
    """Raised when a persisted run state is missing or corrupted."""

    def __init__(self, reason: str, **kwargs) -> None:
        """Initialize with reason."""
        super().__init__(
            f"Run state is invalid: {reason}",
            error_code="INVALID_RUN_STATE",
            context={"reason": reason, **kwargs},
        )


class StateTransitionException(HarvestException):
    """Raised when an illegal phase transition is attempted."""

    def __init__(self, from_state: str, to_state: str, reason: str | None = None, **kwargs) -> None:
        """Initialize with transition details."""
        message = f"Failed to transition from '{from_state}' to '{to_state}'"
        if reason:
            message += f": {reason}"

        super().__init__(
            message,
            error_code="TRANSITION_FAILED",
            context={
                "from_state": from_state,
                "to_state": to_state,
                "reason": reason,
                **kwargs,
            },
        )


__all__ = [
    "HarvestException",
    "ErrorKind",
    "EnumerationFailure",
    "NavigationStall",
    "BusyTimeout",
    "CaptureFailure",
    "SinkFailure",
    "StorageException",
    "StorageReadException",
    "StorageWriteException",
    "InvalidRunStateException",
    "StateTransitionException",
]
