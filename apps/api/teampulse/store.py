"""Durable task repository.

Each write method runs in its own transaction together with its audit row
and commits before returning, so a caller that gets a Task back knows the
write is durable. Driver failures are rolled back and surfaced as
StoreUnavailableError; nothing is retried here.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Iterable

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from teampulse.audit import write_audit
from teampulse.config import settings
from teampulse.errors import NotFoundError, StoreUnavailableError, ValidationError
from teampulse.models import Task, TaskPriority, TaskStatus, User, new_id, parse_priority, parse_status, utcnow

logger = logging.getLogger(__name__)

UNSET: Any = object()


@dataclass
class TaskFields:
  """Mutable task fields. On update, `UNSET` optional fields keep their stored value."""

  title: str
  assignee_id: str | None = None
  description: str | None = UNSET
  status: TaskStatus | str | None = None
  priority: TaskPriority | str | None = None
  deadline: datetime | None = UNSET
  project_id: str | None = UNSET


@dataclass
class AttachmentMeta:
  name: str
  url: str
  content_type: str = "application/octet-stream"
  size: int = 0


@dataclass
class VoiceNoteMeta:
  url: str
  duration_seconds: float = 0
  transcript: str = ""


def _next_stamp(previous: datetime | None) -> datetime:
  now = utcnow()
  if previous is not None:
    if previous.tzinfo is None:
      previous = previous.replace(tzinfo=timezone.utc)
    if now <= previous:
      now = previous + timedelta(microseconds=1)
  return now


def _clean_title(title: str | None) -> str:
  t = (title or "").strip()
  if not t:
    raise ValidationError("title", "Title is required")
  return t


def _status(value: object, *, default: TaskStatus | None = None) -> TaskStatus:
  if value is None and default is not None:
    return default
  try:
    return parse_status(value)
  except ValueError:
    raise ValidationError("status", f"Invalid status {value!r}; expected one of {[s.value for s in TaskStatus]}") from None


def _priority(value: object, *, default: TaskPriority | None = None) -> TaskPriority:
  if value is None and default is not None:
    return default
  try:
    return parse_priority(value)
  except ValueError:
    raise ValidationError("priority", f"Invalid priority {value!r}; expected one of {[p.value for p in TaskPriority]}") from None


def validate_fields(fields: TaskFields, *, create: bool = False) -> tuple[str, TaskStatus, TaskPriority]:
  """Checks title, status and priority; create fills in the column defaults."""
  title = _clean_title(fields.title)
  if create:
    return title, _status(fields.status, default=TaskStatus.TODO), _priority(fields.priority, default=TaskPriority.MEDIUM)
  return title, _status(fields.status), _priority(fields.priority)


def _deadline(value: datetime | None) -> datetime | None:
  if value is None:
    return None
  if value.tzinfo is None:
    return value.replace(tzinfo=timezone.utc)
  return value.astimezone(timezone.utc)


class TaskStore:
  def __init__(self, db: AsyncSession) -> None:
    self.db = db

  @asynccontextmanager
  async def _transaction(self, op: str) -> AsyncIterator[None]:
    try:
      yield
      await self.db.commit()
    except SQLAlchemyError as exc:
      await self.db.rollback()
      logger.error("task store %s failed: %s", op, exc.__class__.__name__, exc_info=True)
      raise StoreUnavailableError(f"Task store unavailable during {op}") from exc
    except Exception:
      await self.db.rollback()
      raise

  async def _read(self, stmt):
    try:
      return await self.db.execute(stmt)
    except SQLAlchemyError as exc:
      logger.error("task store read failed: %s", exc.__class__.__name__, exc_info=True)
      raise StoreUnavailableError("Task store unavailable") from exc

  async def resolve_user(self, user_id: str | None) -> User | None:
    if not user_id:
      return None
    res = await self._read(select(User).where(User.id == str(user_id)))
    u = res.scalar_one_or_none()
    if u is None or not u.active:
      return None
    return u

  async def resolve_users(self, user_ids: Iterable[str | None]) -> dict[str, User]:
    """Batch form of resolve_user: active users keyed by id, unknown ids left out."""
    ids = {str(i) for i in user_ids if i}
    if not ids:
      return {}
    res = await self._read(select(User).where(User.id.in_(ids)))
    return {u.id: u for u in res.scalars().all() if u.active}

  async def _require_assignee(self, assignee_id: str | None) -> User:
    if not assignee_id:
      raise ValidationError("assignee", "Assignee is required")
    u = await self.resolve_user(assignee_id)
    if u is None:
      raise ValidationError("assignee", "Assignee not found")
    return u

  async def get(self, task_id: str) -> Task:
    res = await self._read(select(Task).where(Task.id == task_id).execution_options(populate_existing=True))
    t = res.scalar_one_or_none()
    if t is None:
      raise NotFoundError("Task", task_id)
    return t

  async def list(
    self,
    *,
    status: TaskStatus | str | None = None,
    assignee_id: str | None = None,
    priority: TaskPriority | str | None = None,
  ) -> list[Task]:
    q = select(Task)
    if status:
      q = q.where(Task.status == _status(status).value)
    if assignee_id:
      q = q.where(Task.assignee_id == assignee_id)
    if priority:
      q = q.where(Task.priority == _priority(priority).value)
    q = q.order_by(Task.created_at.desc(), Task.id.asc())
    res = await self._read(q)
    return list(res.scalars().all())

  async def create(self, fields: TaskFields, *, created_by: str) -> Task:
    title, status, priority = validate_fields(fields, create=True)
    await self._require_assignee(fields.assignee_id)

    now = utcnow()
    t = Task(
      id=new_id(),
      title=title,
      description=(fields.description if fields.description not in (UNSET, None) else ""),
      assignee_id=fields.assignee_id,
      status=status.value,
      priority=priority.value,
      deadline=_deadline(fields.deadline) if fields.deadline is not UNSET else None,
      project_id=fields.project_id if fields.project_id is not UNSET else None,
      attachments=[],
      voice_notes=[],
      created_by=created_by,
      created_at=now,
      updated_at=now,
    )
    async with self._transaction("create"):
      self.db.add(t)
      await write_audit(
        self.db,
        event_type="task.created",
        entity_type="Task",
        entity_id=t.id,
        task_id=t.id,
        actor_id=created_by,
        payload={"title": t.title, "assignee": t.assignee_id, "status": t.status, "priority": t.priority},
      )
    return t

  async def update(self, task_id: str, fields: TaskFields, *, actor_id: str | None = None) -> Task:
    title, status, priority = validate_fields(fields)
    if fields.assignee_id:
      await self._require_assignee(fields.assignee_id)

    t = await self.get(task_id)
    values: dict[str, Any] = {
      "title": title,
      "status": status.value,
      "priority": priority.value,
      "updated_at": _next_stamp(t.updated_at),
    }
    if fields.assignee_id:
      values["assignee_id"] = fields.assignee_id
    if fields.description is not UNSET:
      values["description"] = fields.description or ""
    if fields.deadline is not UNSET:
      values["deadline"] = _deadline(fields.deadline)
    if fields.project_id is not UNSET:
      values["project_id"] = fields.project_id

    async with self._transaction("update"):
      # One UPDATE carrying every mutable column: the last writer's full field set wins.
      res = await self.db.execute(
        update(Task).where(Task.id == task_id).values(**values).execution_options(synchronize_session=False)
      )
      if res.rowcount == 0:
        raise NotFoundError("Task", task_id)
      await write_audit(
        self.db,
        event_type="task.updated",
        entity_type="Task",
        entity_id=task_id,
        task_id=task_id,
        actor_id=actor_id,
        payload={"changed": sorted(k for k in values if k != "updated_at"), "title": title, "status": status.value},
      )
    return await self.get(task_id)

  async def move(self, task_id: str, status: TaskStatus | str, *, actor_id: str | None = None) -> Task:
    new_status = _status(status)
    t = await self.get(task_id)
    from_status = t.status
    async with self._transaction("move"):
      res = await self.db.execute(
        update(Task)
        .where(Task.id == task_id)
        .values(status=new_status.value, updated_at=_next_stamp(t.updated_at))
        .execution_options(synchronize_session=False)
      )
      if res.rowcount == 0:
        raise NotFoundError("Task", task_id)
      await write_audit(
        self.db,
        event_type="task.moved",
        entity_type="Task",
        entity_id=task_id,
        task_id=task_id,
        actor_id=actor_id,
        payload={"from": from_status, "to": new_status.value},
      )
    return await self.get(task_id)

  async def delete(self, task_id: str, *, actor_id: str | None = None) -> None:
    t = await self.get(task_id)
    title = t.title
    async with self._transaction("delete"):
      res = await self.db.execute(delete(Task).where(Task.id == task_id).execution_options(synchronize_session=False))
      if res.rowcount == 0:
        raise NotFoundError("Task", task_id)
      await write_audit(
        self.db,
        event_type="task.deleted",
        entity_type="Task",
        entity_id=task_id,
        task_id=task_id,
        actor_id=actor_id,
        payload={"title": title},
      )
    self.db.expunge(t)

  async def add_attachment(self, task_id: str, meta: AttachmentMeta, *, actor_id: str | None = None) -> tuple[Task, dict[str, Any]]:
    name = (meta.name or "").strip()
    if not name:
      raise ValidationError("name", "Attachment name is required")
    if not (meta.url or "").strip():
      raise ValidationError("url", "Attachment url is required")
    if meta.size < 0:
      raise ValidationError("size", "Attachment size must not be negative")
    if meta.size > settings.max_attachment_bytes:
      raise ValidationError("size", f"Attachment exceeds {settings.max_attachment_bytes} bytes")

    t = await self.get(task_id)
    stamp = _next_stamp(t.updated_at)
    entry = {
      "id": new_id(),
      "name": name,
      "url": meta.url.strip(),
      "contentType": (meta.content_type or "application/octet-stream").strip(),
      "size": int(meta.size),
      "uploadedAt": stamp.isoformat(),
    }
    async with self._transaction("add_attachment"):
      # Reassign rather than mutate so the JSON column is flagged dirty.
      t.attachments = [*(t.attachments or []), entry]
      t.updated_at = stamp
      await write_audit(
        self.db,
        event_type="task.attachment.added",
        entity_type="Attachment",
        entity_id=entry["id"],
        task_id=task_id,
        actor_id=actor_id,
        payload={"name": name, "size": entry["size"]},
      )
    return t, entry

  async def remove_attachment(self, task_id: str, attachment_id: str, *, actor_id: str | None = None) -> Task:
    t = await self.get(task_id)
    kept = [a for a in (t.attachments or []) if a.get("id") != attachment_id]
    if len(kept) == len(t.attachments or []):
      raise NotFoundError("Attachment", attachment_id)
    async with self._transaction("remove_attachment"):
      t.attachments = kept
      t.updated_at = _next_stamp(t.updated_at)
      await write_audit(
        self.db,
        event_type="task.attachment.removed",
        entity_type="Attachment",
        entity_id=attachment_id,
        task_id=task_id,
        actor_id=actor_id,
      )
    return t

  async def add_voice_note(self, task_id: str, meta: VoiceNoteMeta, *, uploaded_by: str) -> tuple[Task, dict[str, Any]]:
    if not (meta.url or "").strip():
      raise ValidationError("url", "Voice note url is required")
    if meta.duration_seconds < 0:
      raise ValidationError("durationSeconds", "Duration must not be negative")

    t = await self.get(task_id)
    stamp = _next_stamp(t.updated_at)
    entry = {
      "id": new_id(),
      "url": meta.url.strip(),
      "durationSeconds": float(meta.duration_seconds),
      "uploadedBy": uploaded_by,
      "transcript": meta.transcript or "",
      "uploadedAt": stamp.isoformat(),
    }
    async with self._transaction("add_voice_note"):
      t.voice_notes = [*(t.voice_notes or []), entry]
      t.updated_at = stamp
      await write_audit(
        self.db,
        event_type="task.voice_note.added",
        entity_type="VoiceNote",
        entity_id=entry["id"],
        task_id=task_id,
        actor_id=uploaded_by,
        payload={"durationSeconds": entry["durationSeconds"]},
      )
    return t, entry

  async def remove_voice_note(self, task_id: str, voice_note_id: str, *, actor_id: str | None = None) -> Task:
    t = await self.get(task_id)
    kept = [v for v in (t.voice_notes or []) if v.get("id") != voice_note_id]
    if len(kept) == len(t.voice_notes or []):
      raise NotFoundError("VoiceNote", voice_note_id)
    async with self._transaction("remove_voice_note"):
      t.voice_notes = kept
      t.updated_at = _next_stamp(t.updated_at)
      await write_audit(
        self.db,
        event_type="task.voice_note.removed",
        entity_type="VoiceNote",
        entity_id=voice_note_id,
        task_id=task_id,
        actor_id=actor_id,
      )
    return t
