"""
Logging setup for the ops agent.

Every module logs through ``logging.getLogger(__name__)``; this module only
installs the root handler. Two formats are available:

- text: ``%(asctime)s - %(name)s - %(levelname)s - %(message)s``
- json: one object per line with ts, level, logger, msg and any fields
  passed through ``extra=``

Environment Variables:
- LOG_LEVEL: Root log level (default: INFO)
- LOG_FORMAT: "text" or "json" (default: text)
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes present on every LogRecord; anything else came from extra=
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Install the root handler, replacing any existing configuration."""
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    logging.basicConfig(level=level.upper(), handlers=[handler], force=True)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
