"""
Logging configuration with optional JSON output.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

EXTRA_FIELDS = (
    "request_id",
    "session_id",
    "timesheet_id",
    "phase",
    "path",
    "status",
    "duration_ms",
)


class JSONFormatter(logging.Formatter):
    """JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "msg": record.getMessage(),
            "logger": record.name,
            "service": "timeops",
        }

        for field in EXTRA_FIELDS:
            if hasattr(record, field):
                log_obj[field] = getattr(record, field)

        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


def configure_logging(level: int = logging.INFO, json_logs: Optional[bool] = None) -> None:
    """
    Configure root logging. JSON output follows LOG_JSON unless
    ``json_logs`` is given explicitly.
    """
    if json_logs is None:
        from timeops.config import settings
        json_logs = settings.LOG_JSON

    handler = logging.StreamHandler(sys.stdout)

    if json_logs:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )
