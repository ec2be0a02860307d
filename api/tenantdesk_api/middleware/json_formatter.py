"""Single-line JSON log formatter.

Enabled with ``API_STRUCTURED_LOGGING=true``; the application then replaces
the root handlers with a ``StreamHandler`` using :class:`JSONFormatter`.

Output schema per line::

    {
        "timestamp": "2026-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "tenantdesk_api.access",
        "message": "request completed",
        "request": { ... },        // from RequestLoggingMiddleware
        "operation": "...",        // from ConsistencyError reports
        "exc_info": "Traceback ..."
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

# ``extra=`` keys copied into the JSON payload when present on a record.
_EXTRA_FIELDS: tuple[str, ...] = ("request", "operation", "profile_id", "tenant_id", "correlation_id")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


def enable_json_logging(level: int = logging.INFO) -> None:
    """Replace the root log handlers with a single JSON stream handler."""
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
