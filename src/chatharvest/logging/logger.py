"""Structured logging configuration for chatharvest using structlog.

Log events are short snake_case names with keyword context, e.g.
``logger.info("tick_started", phase="IN_ITEM", cursor=3)``. The ledger is the
audit trail; logs are the operator's view of the same run.
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, cast

import structlog

from ..config import get_settings


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    structured: bool = True,
    console: bool = True,
    add_timestamp: bool = True,
    add_caller_info: bool = False,
    colorize: bool = True,
) -> None:
    """Configure structured logging for chatharvest.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        structured: Use JSON structured output
        console: Enable console output (overridden by CHATHARVEST_DISABLE_CONSOLE_LOGGING)
        add_timestamp: Add timestamps to logs
        add_caller_info: Add caller information
        colorize: Colorize console output (only for non-structured)
    """
    if os.getenv("CHATHARVEST_DISABLE_CONSOLE_LOGGING") == "1":
        console = False

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
    ]

    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))

    if add_caller_info:
        processors.append(
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    structlog.processors.CallsiteParameter.FILENAME,
                    structlog.processors.CallsiteParameter.LINENO,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                ]
            )
        )

    processors.extend(
        [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
        ]
    )

    if structured:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=colorize and console))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = []

    if console:
        # stdout is reserved for CLI output
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        handlers.append(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        handlers.append(file_handler)

    if not handlers:
        handlers.append(logging.NullHandler())
        level = "CRITICAL"

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper()),
        handlers=handlers,
        force=True,
    )


_logging_initialized = False


def _ensure_logging_initialized() -> None:
    """Ensure logging is initialized (called lazily, not at import time)."""
    global _logging_initialized

    if _logging_initialized:
        return

    try:
        settings = get_settings()
        setup_logging(
            level="DEBUG" if settings.debug_mode else settings.log_level,
            structured=not settings.debug_mode,
            colorize=settings.debug_mode,
        )
    except (AttributeError, OSError, ValueError):
        setup_logging(level="INFO", structured=False)

    _logging_initialized = True


def mark_logging_configured() -> None:
    """Record that logging was configured explicitly (e.g. by the CLI)."""
    global _logging_initialized
    _logging_initialized = True


def log_file_for_today(log_path: Path) -> Path:
    """Daily log file path under ``log_path``."""
    return log_path / f"chatharvest_{datetime.now().strftime('%Y%m%d')}.log"


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Structured logger instance
    """
    _ensure_logging_initialized()
    return cast(structlog.BoundLogger, structlog.get_logger(name))


class TransitionLogger:
    """Specialized logger for run phase transitions."""

    def __init__(self, base_logger: structlog.BoundLogger | None = None) -> None:
        """Initialize transition logger.

        Args:
            base_logger: Base logger to use
        """
        self.logger = base_logger or get_logger(__name__)

    def log_transition(
        self,
        from_phase: str,
        to_phase: str,
        trigger: str | None = None,
        success: bool = True,
        **kwargs,
    ) -> None:
        """Log a phase transition.

        Args:
            from_phase: Source phase
            to_phase: Target phase
            trigger: What caused the tick that made the transition
            success: Whether the transition is a normal one
            **kwargs: Additional context (run_id, cursor, ...)
        """
        log_data = {
            "from_phase": from_phase,
            "to_phase": to_phase,
            **kwargs,
        }

        if trigger:
            log_data["trigger"] = trigger

        if success:
            self.logger.info("phase_transition", **log_data)
        else:
            self.logger.warning("phase_transition_failed", **log_data)
