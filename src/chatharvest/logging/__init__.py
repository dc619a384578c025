"""Logging module for chatharvest."""

from .logger import (
    TransitionLogger,
    get_logger,
    log_file_for_today,
    mark_logging_configured,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "log_file_for_today",
    "mark_logging_configured",
    "TransitionLogger",
]
