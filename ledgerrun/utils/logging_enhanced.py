"""Structured run-event logging with rotation.

Every rebalance invocation emits a small set of JSON events (run started,
plan computed, guardrail findings, orders executed, run skipped, ...) into
rotating files under a log directory, one file per event family.
"""

import json
import logging
import logging.handlers
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional


class RunEventType(Enum):
    """Types of run events to log."""

    # Run lifecycle
    RUN_STARTED = "run_started"
    RUN_SKIPPED = "run_skipped"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"

    # Planning
    PLAN_COMPUTED = "plan_computed"

    # Guardrails
    GUARDRAIL_PASSED = "guardrail_passed"
    GUARDRAIL_BLOCKED = "guardrail_blocked"
    GUARDRAIL_WARNING = "guardrail_warning"

    # Orders
    ORDERS_EXECUTED = "orders_executed"

    # Errors
    PERSISTENCE_ERROR = "persistence_error"


_FAMILY_BY_EVENT = {
    RunEventType.PLAN_COMPUTED: "runs",
    RunEventType.GUARDRAIL_PASSED: "guardrails",
    RunEventType.GUARDRAIL_BLOCKED: "guardrails",
    RunEventType.GUARDRAIL_WARNING: "guardrails",
    RunEventType.ORDERS_EXECUTED: "orders",
    RunEventType.PERSISTENCE_ERROR: "errors",
    RunEventType.RUN_FAILED: "errors",
}


class RunEventLogger:
    """Rotating JSON logger for rebalance run events.

    Example:
        >>> events = RunEventLogger(log_dir="logs")
        >>> events.log_event(
        ...     RunEventType.PLAN_COMPUTED,
        ...     idempotency_key="2026-01-10-ab12cd34ef56ab78",
        ...     status="PLANNED",
        ...     planned_spend_usd=100.0,
        ... )
    """

    FAMILIES = ("runs", "orders", "guardrails", "errors")

    def __init__(
        self,
        log_dir: str | Path = "logs",
        max_bytes: int = 5 * 1024 * 1024,
        backup_count: int = 14,
        enable_console: bool = False,
    ):
        """Initialize the event logger.

        Args:
            log_dir: Directory for event log files
            max_bytes: Maximum size per log file before rotation
            backup_count: Number of rotated files to keep
            enable_console: Also echo events to the console
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self.enable_console = enable_console

        self._loggers = {
            family: self._create_rotating_logger(family) for family in self.FAMILIES
        }

    def _create_rotating_logger(self, name: str) -> logging.Logger:
        logger = logging.getLogger(f"ledgerrun.events.{name}")
        logger.setLevel(logging.INFO)
        logger.propagate = False

        for handler in list(logger.handlers):
            handler.close()
        logger.handlers = []

        file_handler = logging.handlers.RotatingFileHandler(
            filename=self.log_dir / f"{name}.log",
            maxBytes=self.max_bytes,
            backupCount=self.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(file_handler)

        if self.enable_console:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
            logger.addHandler(console_handler)

        return logger

    def log_event(self, event_type: RunEventType, **data: Any) -> dict[str, Any]:
        """Write one structured event and return it.

        Args:
            event_type: Type of run event
            **data: Event fields (must be JSON-serializable)

        Returns:
            The event as written
        """
        event = {
            "event": event_type.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **data,
        }

        family = _FAMILY_BY_EVENT.get(event_type, "runs")
        logger = self._loggers[family]
        if family == "errors":
            logger.error(json.dumps(event, default=str))
        else:
            logger.info(json.dumps(event, default=str))
        return event

    def close(self) -> None:
        """Flush and detach all file handlers."""
        for logger in self._loggers.values():
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)


_event_logger: Optional[RunEventLogger] = None


def get_event_logger(log_dir: str | Path = "logs") -> RunEventLogger:
    """Get or create the process-wide run event logger."""
    global _event_logger

    if _event_logger is None:
        _event_logger = RunEventLogger(log_dir=log_dir)

    return _event_logger
