"""JSON-formatted logging for scaling passes."""

import json
import logging
import sys
import traceback
from datetime import UTC, datetime
from typing import Any

_fallback = logging.getLogger(__name__)


class StructuredLogger:
    """
    JSON-formatted logger for CloudWatch Logs Insights.

    Each call writes one JSON object per line to stdout. A failure to emit
    is reported through the standard ``logging`` module and never raised,
    so logging cannot abort a scaling pass.

    Args:
        name: Logger name written to every entry
        context: Fields added to every entry (e.g. the batch run_id)
    """

    def __init__(self, name: str, context: dict[str, Any] | None = None):
        self._name = name
        self._context = dict(context or {})

    def with_context(self, **context: Any) -> "StructuredLogger":
        """Return a logger that adds ``context`` to every entry."""
        return StructuredLogger(self._name, {**self._context, **context})

    def _log(self, level: str, message: str, **extra: Any) -> None:
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": level,
            "logger": self._name,
            "message": message,
            **self._context,
            **extra,
        }
        try:
            print(json.dumps(log_entry, default=str), file=sys.stdout)
        except (OSError, TypeError, ValueError) as e:
            _fallback.warning("Failed to emit structured log %r: %s", message, e)

    def log(self, event: str, **detail: Any) -> None:
        """Record a pass event (INFO level)."""
        self._log("INFO", event, **detail)

    def debug(self, message: str, **extra: Any) -> None:
        self._log("DEBUG", message, **extra)

    def info(self, message: str, **extra: Any) -> None:
        self._log("INFO", message, **extra)

    def warning(self, message: str, exc_info: bool = False, **extra: Any) -> None:
        if exc_info:
            extra["exception"] = traceback.format_exc()
        self._log("WARNING", message, **extra)

    def error(self, message: str, exc_info: bool = False, **extra: Any) -> None:
        if exc_info:
            extra["exception"] = traceback.format_exc()
        self._log("ERROR", message, **extra)
