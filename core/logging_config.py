"""JSON log lines tagged with the id of the send that produced them."""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import TextIO

# Set at the start of every send. Tasks and call_soon callbacks created by
# that send copy the context, so their records carry the same id.
_send_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "send_id", default="-"
)

# Attributes every LogRecord has; anything else on a record came from extra=
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def _timestamp(created: float) -> str:
    moment = datetime.fromtimestamp(created, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


class JsonFormatter(logging.Formatter):
    """One JSON object per record: fixed keys first, then the caller's extras."""

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        payload: dict = {
            "ts":      _timestamp(record.created),
            "level":   record.levelname,
            "logger":  record.name,
            "msg":     record.message,
            "send_id": _send_id_var.get(),
        }
        payload.update(
            (key, value) for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_json_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    """Route all logging through a single JSON handler on *stream* (stdout if omitted)."""
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def new_send_id() -> str:
    return uuid.uuid4().hex[:8]


def set_send_id(send_id: str) -> None:
    _send_id_var.set(send_id)


def get_send_id() -> str:
    """The id of the send running in this context, or ``"-"`` outside one."""
    return _send_id_var.get()
