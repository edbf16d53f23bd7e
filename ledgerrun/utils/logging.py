"""Application logging for LedgerRun.

Console output goes to stdout, optionally mirrored into a rotating file.
``log_format="json"`` switches both to one JSON object per line, with any
``log_with_context`` fields under ``"context"``.
"""

import json
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

JSON_LOG_FORMAT = "json"
TEXT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Chatty client libraries are held at WARNING unless we log below that
QUIET_LOGGERS = ("alpaca", "apscheduler", "urllib3")


class JsonFormatter(logging.Formatter):
    """Format records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def resolve_level(level: str | int) -> int:
    """Map a level name to its number, falling back to INFO."""
    if isinstance(level, int):
        return level
    numeric = getattr(logging, str(level).upper(), None)
    return numeric if isinstance(numeric, int) else logging.INFO


def setup_logging(
    level: str | int = "INFO",
    log_format: str | None = None,
    log_file: str | Path | None = None,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> None:
    """Configure the root logger for a CLI or scheduled run.

    Args:
        level: Level name (DEBUG, INFO, ...); unknown names mean INFO
        log_format: logging format string, "json", or None for the default
        log_file: Also write to this file, rotated at ``max_bytes``
        max_bytes: Rotation size for ``log_file``
        backup_count: Rotated files to keep

    Example:
        >>> setup_logging(level="DEBUG", log_file="logs/ledgerrun.log")
    """
    numeric_level = resolve_level(level)

    if log_format == JSON_LOG_FORMAT:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(log_format or TEXT_LOG_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
            )
        )
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Module logger; call as ``get_logger(__name__)``."""
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: Any,
) -> None:
    """Log a message with key=value context.

    Text output gets ``"message | k=v ..."``. The fields are also attached
    to the record as ``context`` for ``JsonFormatter``.

    Example:
        >>> log_with_context(logger, "info", "Plan computed", status="PLANNED", legs=2)
        # Plan computed | status=PLANNED legs=2
    """
    log_func = getattr(logger, level.lower())

    if not context:
        log_func(message)
        return

    context_str = " ".join(f"{k}={v}" for k, v in context.items())
    log_func(f"{message} | {context_str}", extra={"context": context})
