from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from teampulse.config import settings

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str] = ContextVar("user_id", default="")

_STANDARD_ATTRS = frozenset(
  logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys() | {"message", "taskName", "request_id", "user_id"}
)


def new_request_id() -> str:
  return uuid.uuid4().hex[:8]


class JSONFormatter(logging.Formatter):
  """One JSON object per line, with request context and any `extra=` fields."""

  def format(self, record: logging.LogRecord) -> str:
    data: dict[str, Any] = {
      "timestamp": datetime.now(timezone.utc).isoformat(),
      "level": record.levelname,
      "logger": record.name,
      "message": record.getMessage(),
    }
    rid = request_id_var.get()
    if rid:
      data["request_id"] = rid
    uid = user_id_var.get()
    if uid:
      data["user_id"] = uid
    if record.exc_info:
      data["exception"] = self.formatException(record.exc_info)
    for key, value in record.__dict__.items():
      if key not in _STANDARD_ATTRS and not key.startswith("_"):
        data[key] = value
    return json.dumps(data, default=str)


class ContextualFormatter(logging.Formatter):
  def format(self, record: logging.LogRecord) -> str:
    record.request_id = request_id_var.get() or "-"
    record.user_id = user_id_var.get() or "-"
    return super().format(record)


def configure_logging(level: str | None = None, *, json_lines: bool | None = None) -> None:
  root = logging.getLogger("teampulse")
  root.setLevel(getattr(logging, (level or settings.log_level).upper(), logging.INFO))
  root.handlers.clear()
  handler = logging.StreamHandler(sys.stdout)
  use_json = settings.log_json if json_lines is None else json_lines
  if use_json:
    handler.setFormatter(JSONFormatter())
  else:
    handler.setFormatter(
      ContextualFormatter("%(asctime)s %(levelname)s [%(name)s] [req=%(request_id)s user=%(user_id)s] %(message)s")
    )
  root.addHandler(handler)
  root.propagate = False
