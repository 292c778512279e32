"""JSON logging for the forum API.

- `set_request_id` stores the per-request correlation id
- `JSONFormatter` renders records as one JSON object per line
- `configure_logging` installs the formatter on stdout
"""

import json
import logging
import sys
import time
from contextvars import ContextVar
from typing import Optional

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def set_request_id(rid: Optional[str]) -> None:
    """Set (or clear, with None) the correlation id attached to log records"""
    _request_id.set(rid)


def get_request_id() -> Optional[str]:
    return _request_id.get()


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        """Serialize a record with level, timestamp, logger name and message.

        The request id and exception text are added when present.
        """
        base = {
            "level": record.levelname,
            "ts": round(time.time(), 3),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        rid = _request_id.get()
        if rid:
            base["request_id"] = rid
        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False)


def configure_logging(level="INFO") -> logging.Logger:
    """Send root logging to stdout through the JSON formatter.

    Returns the "forum" logger.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)
    return logging.getLogger("forum")
