"""JSONL logging for the psmodule CLI.

Each record is written as one JSON object per line. The import engine tags its
debug messages (``[module:resolve] Foo -> ...``); the tag becomes the record's
``event`` field (``module.resolve``) and is stripped from ``message``.
"""

import json
import logging
import os
import re
from datetime import UTC
from datetime import datetime
from pathlib import Path
from typing import Any

LOG_PATH_ENV = "PSMODULE_LOG_PATH"
LOG_LEVEL_ENV = "PSMODULE_LOG_LEVEL"
DEFAULT_PATH = "./psmodule.log.jsonl"
DEFAULT_LEVEL = "INFO"
SCHEMA = {"name": "psmodule.log", "ver": "1.0.0"}

_EVENT_TAG = re.compile(r"^\[(?P<event>[a-z_]+:[a-z_]+)\]\s*")
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName", "event"}

# Log every HTTP request at INFO
_CHATTY_LOGGERS = ("httpx", "httpcore")


def to_payload(record: logging.LogRecord) -> dict[str, Any]:
    """Build the JSON object for one record; extra= fields are carried over."""
    message = record.getMessage()
    event = getattr(record, "event", None)
    match = _EVENT_TAG.match(message)
    if match:
        event = event or match.group("event").replace(":", ".")
        message = message[match.end() :]

    payload: dict[str, Any] = {
        "ts": datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds"),
        "lvl": record.levelname,
        "schema": SCHEMA,
        "logger": record.name,
        "event": event,
        "message": message,
    }
    if record.exc_info and record.exc_info[1] is not None:
        payload["error"] = f"{type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
    for key, value in vars(record).items():
        if key not in _STANDARD_ATTRS:
            payload.setdefault(key, value)
    return payload


class JsonlHandler(logging.Handler):
    """Append records to a JSONL file."""

    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(to_payload(record), ensure_ascii=False, default=str)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except Exception:
            self.handleError(record)


def init_json_logging(path: str | None = None, level: str | None = None) -> JsonlHandler:
    """Install the JSONL sink on the root logger, replacing a previous one.

    Path and level default to PSMODULE_LOG_PATH and PSMODULE_LOG_LEVEL, read
    at call time.
    """
    path = path or os.environ.get(LOG_PATH_ENV, DEFAULT_PATH)
    level_value = getattr(logging, (level or os.environ.get(LOG_LEVEL_ENV, DEFAULT_LEVEL)).upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level_value)
    for existing in [h for h in root.handlers if isinstance(h, JsonlHandler)]:
        root.removeHandler(existing)
        existing.close()
    handler = JsonlHandler(path)
    root.addHandler(handler)

    if level_value > logging.DEBUG:
        for name in _CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    return handler
