"""JSON log formatting for stat records.

One JSON object per record, with any ``stats`` extra flattened into the
top level.
"""

import json
import logging
import socket
import traceback
from datetime import datetime, timezone
from typing import Any, Dict


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON objects."""

    def __init__(self, service: str) -> None:
        super().__init__()
        self.service_name = service
        self.hostname = socket.gethostname()

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "hostname": self.hostname,
        }
        stats = getattr(record, "stats", None)
        if isinstance(stats, dict):
            data.update(stats)
        if record.exc_info:
            data["exception"] = self.format_exception(record.exc_info)
        return json.dumps(data, default=str)

    @staticmethod
    def format_exception(exc_info: Any) -> Dict[str, Any]:
        et, ev, tb = exc_info
        return {
            "type": et.__name__,
            "message": str(ev),
            "stack": traceback.format_tb(tb),
        }
