"""Board synchronization: every task write goes policy -> store -> bus.

An event is published only after the store call returned, so a write that
raised (denied, invalid, missing, store down) is never broadcast.
"""

from __future__ import annotations

import logging
from typing import Any

from teampulse.errors import StoreUnavailableError, ValidationError
from teampulse.events import EventBus, TaskEvent, TaskEventType
from teampulse.models import BOARD_COLUMNS, Task, TaskStatus, User
from teampulse.policy import Identity, TaskOperation, ensure_allowed
from teampulse.schemas import TaskOut, task_out, task_payload
from teampulse.store import AttachmentMeta, TaskFields, TaskStore, VoiceNoteMeta, validate_fields

logger = logging.getLogger(__name__)


class BoardSyncService:
  def __init__(self, store: TaskStore, bus: EventBus) -> None:
    self.store = store
    self.bus = bus

  def _publish(self, event_type: TaskEventType, payload: dict[str, Any]) -> None:
    self.bus.publish(TaskEvent(event_type, payload))

  async def users_for(self, tasks: list[Task]) -> dict[str, User]:
    ids: set[str] = set()
    for t in tasks:
      ids.update((t.assignee_id, t.created_by))
    return await self.store.resolve_users(ids)

  async def render(self, tasks: list[Task]) -> list[TaskOut]:
    users = await self.users_for(tasks)
    return [TaskOut(**task_out(t, users)) for t in tasks]

  async def _users_after_write(self, t: Task) -> dict[str, User]:
    # The write is already committed, so a failed lookup only costs the user summaries.
    try:
      return await self.users_for([t])
    except StoreUnavailableError:
      logger.warning("rendering task %s without user summaries", t.id)
      return {}

  async def present(self, t: Task) -> TaskOut:
    """Renders a task just written by this service."""
    return TaskOut(**task_out(t, await self._users_after_write(t)))

  async def _publish_task(self, event_type: TaskEventType, t: Task) -> None:
    self._publish(event_type, task_payload(t, await self._users_after_write(t)))

  async def _check_assign(self, actor: Identity, assignee_id: str | None) -> None:
    if not assignee_id:
      raise ValidationError("assignee", "Assignee is required")
    target = await self.store.resolve_user(assignee_id)
    if target is None:
      raise ValidationError("assignee", "Assignee not found")
    ensure_allowed(actor.role, TaskOperation.ASSIGN, target.role)

  async def board(self) -> dict[TaskStatus, list[Task]]:
    tasks = await self.store.list()
    columns: dict[TaskStatus, list[Task]] = {s: [] for s in BOARD_COLUMNS}
    for t in tasks:
      columns[TaskStatus(t.status)].append(t)
    return columns

  async def create_task(self, actor: Identity, fields: TaskFields) -> Task:
    validate_fields(fields, create=True)
    await self._check_assign(actor, fields.assignee_id)
    t = await self.store.create(fields, created_by=actor.user_id)
    logger.info("task %s created by %s (assignee=%s)", t.id, actor.user_id, t.assignee_id)
    await self._publish_task(TaskEventType.TASK_CREATED, t)
    return t

  async def update_task(self, actor: Identity, task_id: str, fields: TaskFields) -> Task:
    # Field errors are reported before any assignment rule is looked at.
    validate_fields(fields)
    current = await self.store.get(task_id)
    if fields.assignee_id and fields.assignee_id != current.assignee_id:
      await self._check_assign(actor, fields.assignee_id)
    t = await self.store.update(task_id, fields, actor_id=actor.user_id)
    logger.info("task %s updated by %s", task_id, actor.user_id)
    await self._publish_task(TaskEventType.TASK_UPDATED, t)
    return t

  async def move_task(self, actor: Identity, task_id: str, status: TaskStatus | str) -> Task:
    t = await self.store.move(task_id, status, actor_id=actor.user_id)
    logger.info("task %s moved to %s by %s", task_id, t.status, actor.user_id)
    await self._publish_task(TaskEventType.TASK_MOVED, t)
    return t

  async def start_task(self, actor: Identity, task_id: str) -> Task:
    return await self.move_task(actor, task_id, TaskStatus.IN_PROGRESS)

  async def complete_task(self, actor: Identity, task_id: str) -> Task:
    return await self.move_task(actor, task_id, TaskStatus.DONE)

  async def delete_task(self, actor: Identity, task_id: str) -> None:
    await self.store.delete(task_id, actor_id=actor.user_id)
    logger.info("task %s deleted by %s", task_id, actor.user_id)
    self._publish(TaskEventType.TASK_DELETED, {"id": task_id})

  async def add_attachment(self, actor: Identity, task_id: str, meta: AttachmentMeta) -> dict[str, Any]:
    t, entry = await self.store.add_attachment(task_id, meta, actor_id=actor.user_id)
    await self._publish_task(TaskEventType.TASK_UPDATED, t)
    return entry

  async def remove_attachment(self, actor: Identity, task_id: str, attachment_id: str) -> Task:
    t = await self.store.remove_attachment(task_id, attachment_id, actor_id=actor.user_id)
    await self._publish_task(TaskEventType.TASK_UPDATED, t)
    return t

  async def add_voice_note(self, actor: Identity, task_id: str, meta: VoiceNoteMeta) -> dict[str, Any]:
    t, entry = await self.store.add_voice_note(task_id, meta, uploaded_by=actor.user_id)
    await self._publish_task(TaskEventType.TASK_UPDATED, t)
    return entry

  async def remove_voice_note(self, actor: Identity, task_id: str, voice_note_id: str) -> Task:
    t = await self.store.remove_voice_note(task_id, voice_note_id, actor_id=actor.user_id)
    await self._publish_task(TaskEventType.TASK_UPDATED, t)
    return t
