from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic import field_validator

from teampulse.models import AuditEvent, Task, TaskPriority, TaskStatus, User, parse_status


_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _parse_dt_utc(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.fromisoformat(s)
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


def _normalize_status(value: object) -> object:
  if value is None or isinstance(value, TaskStatus):
    return value
  try:
    return parse_status(value)
  except ValueError:
    # Let the enum validator report the bad value.
    return value


class TaskCreateIn(BaseModel):
  title: str = Field(min_length=1, max_length=500)
  description: str = Field(default="", max_length=20000)
  assignee: str = Field(min_length=1)
  status: TaskStatus = TaskStatus.TODO
  priority: TaskPriority = TaskPriority.MEDIUM
  deadline: datetime | None = None
  project: str | None = None

  @field_validator("status", mode="before")
  @classmethod
  def _status_legacy(cls, v: object) -> object:
    return _normalize_status(v)

  @field_validator("deadline", mode="before")
  @classmethod
  def _deadline_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskUpdateIn(BaseModel):
  # title, status and priority are always sent; the rest keep their stored value when omitted.
  title: str = Field(min_length=1, max_length=500)
  status: TaskStatus
  priority: TaskPriority
  description: str | None = Field(default=None, max_length=20000)
  assignee: str | None = None
  deadline: datetime | None = None
  project: str | None = None

  @field_validator("status", mode="before")
  @classmethod
  def _status_legacy(cls, v: object) -> object:
    return _normalize_status(v)

  @field_validator("deadline", mode="before")
  @classmethod
  def _deadline_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskMoveIn(BaseModel):
  status: TaskStatus

  @field_validator("status", mode="before")
  @classmethod
  def _status_legacy(cls, v: object) -> object:
    return _normalize_status(v)


class AttachmentIn(BaseModel):
  name: str = Field(min_length=1, max_length=255)
  url: str = Field(min_length=1, max_length=2000)
  contentType: str = Field(default="application/octet-stream", max_length=255)
  size: int = Field(default=0, ge=0)


class AttachmentOut(BaseModel):
  id: str
  name: str
  url: str
  contentType: str
  size: int
  uploadedAt: datetime


class VoiceNoteIn(BaseModel):
  url: str = Field(min_length=1, max_length=2000)
  durationSeconds: float = Field(default=0, ge=0)
  transcript: str = Field(default="", max_length=20000)


class VoiceNoteOut(BaseModel):
  id: str
  url: str
  durationSeconds: float
  uploadedBy: str
  transcript: str = ""
  uploadedAt: datetime


class UserSummaryOut(BaseModel):
  id: str
  name: str
  email: str
  role: str


class TaskOut(BaseModel):
  id: str
  title: str
  description: str
  assignee: str
  assigneeUser: UserSummaryOut | None = None
  status: TaskStatus
  priority: TaskPriority
  deadline: datetime | None
  project: str | None
  attachments: list[AttachmentOut] = []
  voiceNotes: list[VoiceNoteOut] = []
  createdBy: str
  createdByUser: UserSummaryOut | None = None
  createdAt: datetime
  updatedAt: datetime


class BoardColumnOut(BaseModel):
  status: TaskStatus
  tasks: list[TaskOut]


class BoardOut(BaseModel):
  columns: list[BoardColumnOut]


class UserOut(BaseModel):
  id: str
  email: str
  name: str
  role: Literal["student", "mentor", "coach"]
  active: bool = True
  assignable: bool | None = None


class AuditOut(BaseModel):
  id: str
  taskId: str | None
  actorId: str | None
  eventType: str
  entityType: str
  entityId: str | None
  payload: dict[str, Any]
  createdAt: datetime


class MessageOut(BaseModel):
  message: str


def user_summary(u: User | None) -> dict[str, Any] | None:
  if u is None:
    return None
  return {"id": u.id, "name": u.name, "email": u.email, "role": u.role}


def task_out(t: Task, users: dict[str, User] | None = None) -> dict[str, Any]:
  """Maps a task row onto the TaskOut field names.

  `users` holds the resolved assignee and creator; ids missing from it
  (unknown or disabled users) render with a null summary.
  """
  users = users or {}
  return {
    "id": t.id,
    "title": t.title,
    "description": t.description or "",
    "assignee": t.assignee_id,
    "assigneeUser": user_summary(users.get(t.assignee_id)),
    "status": t.status,
    "priority": t.priority,
    "deadline": t.deadline,
    "project": t.project_id,
    "attachments": list(t.attachments or []),
    "voiceNotes": list(t.voice_notes or []),
    "createdBy": t.created_by,
    "createdByUser": user_summary(users.get(t.created_by)),
    "createdAt": t.created_at,
    "updatedAt": t.updated_at,
  }


def user_out(u: User, *, assignable: bool | None = None) -> dict[str, Any]:
  return {
    "id": u.id,
    "email": u.email,
    "name": u.name,
    "role": u.role,
    "active": bool(u.active),
    "assignable": assignable,
  }


def audit_out(e: AuditEvent) -> dict[str, Any]:
  return {
    "id": e.id,
    "taskId": e.task_id,
    "actorId": e.actor_id,
    "eventType": e.event_type,
    "entityType": e.entity_type,
    "entityId": e.entity_id,
    "payload": e.payload or {},
    "createdAt": e.created_at,
  }


def task_payload(t: Task, users: dict[str, User] | None = None) -> dict[str, Any]:
  """JSON-ready task, serialized exactly as the HTTP responses are."""
  return TaskOut(**task_out(t, users)).model_dump(mode="json")
