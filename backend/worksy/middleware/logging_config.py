"""
Logging setup: plain text for local runs, one JSON object per line otherwise.

JSON lines always carry timestamp, level, logger, message and request_id.
``duration_ms``, ``session_id`` and ``index_id`` are added when a call site
passes them through ``extra=``.
"""

import json
import logging
from datetime import datetime, timezone

from worksy.middleware.request_context import get_request_id

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
EXTRA_FIELDS = ("duration_ms", "session_id", "index_id")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None) or get_request_id(),
        }
        for name in EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                line[name] = value
        if record.exc_info and record.exc_info[1]:
            line["exception"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str, ensure_ascii=False)


def configure_logging(log_level: str = "INFO", json_lines: bool = False) -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)
    if not json_lines:
        logging.basicConfig(level=level, format=TEXT_FORMAT)
        return

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
