from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def new_id() -> str:
  return str(uuid.uuid4())


class TaskStatus(str, Enum):
  TODO = "ToDo"
  IN_PROGRESS = "InProgress"
  REVIEW = "Review"
  DONE = "Done"


class TaskPriority(str, Enum):
  LOW = "Low"
  MEDIUM = "Medium"
  HIGH = "High"
  CRITICAL = "Critical"


# Board column order.
BOARD_COLUMNS: tuple[TaskStatus, ...] = tuple(TaskStatus)

_LEGACY_STATUS = {"to do": TaskStatus.TODO, "todo": TaskStatus.TODO, "in progress": TaskStatus.IN_PROGRESS}


def parse_status(value: object) -> TaskStatus:
  if isinstance(value, TaskStatus):
    return value
  s = str(value or "").strip()
  legacy = _LEGACY_STATUS.get(s.lower())
  if legacy is not None:
    return legacy
  return TaskStatus(s)


def parse_priority(value: object) -> TaskPriority:
  if isinstance(value, TaskPriority):
    return value
  return TaskPriority(str(value or "").strip())


class UTCDateTime(TypeDecorator):
  """Timezone-aware timestamps on every backend (SQLite drops the offset)."""

  impl = DateTime(timezone=True)
  cache_ok = True

  def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
    if value is None:
      return None
    if value.tzinfo is None:
      return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

  def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
    if value is None:
      return None
    if value.tzinfo is None:
      return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  email: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  role: Mapped[str] = mapped_column(String, nullable=False)
  active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class ApiToken(Base):
  __tablename__ = "api_tokens"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  token_hash: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  token_hint: Mapped[str] = mapped_column(String, nullable=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class Task(Base):
  __tablename__ = "tasks"
  __table_args__ = (Index("ix_tasks_status_created", "status", "created_at"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  assignee_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default=TaskStatus.TODO.value)
  priority: Mapped[str] = mapped_column(String, nullable=False, default=TaskPriority.MEDIUM.value, index=True)
  deadline: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
  project_id: Mapped[str | None] = mapped_column(String, nullable=True)
  attachments: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
  voice_notes: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
  created_by: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class AuditEvent(Base):
  __tablename__ = "audit_events"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  # No FK: audit rows outlive hard-deleted tasks.
  task_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  actor_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
  event_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
  payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
