from __future__ import annotations

import json
import logging
import sys
from typing import Any, TextIO

# Fields passed through ``extra=`` that end up in the JSON line.
_EXTRA_KEYS = ("bot_id", "listener_id", "count", "op", "path", "reason")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(
            {key: getattr(record, key) for key in _EXTRA_KEYS if hasattr(record, key)}
        )
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str, *, stream: TextIO | None = None) -> None:
    """
    Send every log record to ``stream`` (stderr by default) as one JSON line.

    stdout is reserved for command output, which scripts parse.
    """
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)


def verbosity_level(verbose: int, default: str = "WARNING") -> str:
    """Map a ``-v`` count onto a level name: none keeps ``default``, -v INFO, -vv DEBUG."""
    if verbose <= 0:
        return default
    if verbose == 1:
        return "INFO"
    return "DEBUG"
