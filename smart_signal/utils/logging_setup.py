"""
JSON-lines logging shared by every module of the application
"""

import json
import logging
import sys
from typing import Any, Dict

_SKIP = {
    "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno",
    "funcName", "created", "msecs", "relativeCreated", "thread",
    "threadName", "processName", "process", "name", "message",
    "taskName",
}


class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects.

    Merges any ``extra=`` keyword arguments passed to the logger call
    directly into the JSON payload, enabling structured field queries.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: D102
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        for k, v in record.__dict__.items():
            if k not in _SKIP:
                payload[k] = v
        return json.dumps(payload, default=str)


def configure_logging(level="INFO", json_lines=True) -> logging.Logger:
    """Configure the root logger once and return it.

    Args:
        level: Level name or number for the root logger.
        json_lines: Emit JSON lines (default) or plain text.

    Returns:
        The root :class:`logging.Logger`.
    """
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        if json_lines:
            handler.setFormatter(JsonFormatter())
        else:
            handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    return root
