from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from teampulse.board import BoardSyncService
from teampulse.deps import get_board_service, get_identity
from teampulse.policy import Identity
from teampulse.schemas import (
  AttachmentIn,
  AttachmentOut,
  BoardOut,
  MessageOut,
  TaskCreateIn,
  TaskMoveIn,
  TaskOut,
  TaskUpdateIn,
  VoiceNoteIn,
  VoiceNoteOut,
  task_out,
)
from teampulse.store import UNSET, AttachmentMeta, TaskFields, VoiceNoteMeta

router = APIRouter(tags=["tasks"])


@router.get("/tasks", response_model=list[TaskOut])
async def list_tasks(
  status_filter: str | None = Query(default=None, alias="status"),
  assignee: str | None = None,
  priority: str | None = None,
  _: Identity = Depends(get_identity),
  svc: BoardSyncService = Depends(get_board_service),
) -> list[TaskOut]:
  tasks = await svc.store.list(status=status_filter, assignee_id=assignee, priority=priority)
  return await svc.render(tasks)


@router.get("/board", response_model=BoardOut)
async def get_board(
  _: Identity = Depends(get_identity),
  svc: BoardSyncService = Depends(get_board_service),
) -> BoardOut:
  columns = await svc.board()
  users = await svc.users_for([t for ts in columns.values() for t in ts])
  return BoardOut(columns=[{"status": s, "tasks": [task_out(t, users) for t in ts]} for s, ts in columns.items()])


@router.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(
  task_id: str,
  _: Identity = Depends(get_identity),
  svc: BoardSyncService = Depends(get_board_service),
) -> TaskOut:
  return (await svc.render([await svc.store.get(task_id)]))[0]


@router.post("/tasks", response_model=TaskOut, status_code=status.HTTP_201_CREATED)
async def create_task(
  payload: TaskCreateIn,
  actor: Identity = Depends(get_identity),
  svc: BoardSyncService = Depends(get_board_service),
) -> TaskOut:
  fields = TaskFields(
    title=payload.title,
    assignee_id=payload.assignee,
    description=payload.description,
    status=payload.status,
    priority=payload.priority,
    deadline=payload.deadline,
    project_id=payload.project,
  )
  t = await svc.create_task(actor, fields)
  return await svc.present(t)


@router.put("/tasks/{task_id}", response_model=TaskOut)
async def update_task(
  task_id: str,
  payload: TaskUpdateIn,
  actor: Identity = Depends(get_identity),
  svc: BoardSyncService = Depends(get_board_service),
) -> TaskOut:
  sent = payload.model_fields_set
  fields = TaskFields(
    title=payload.title,
    assignee_id=payload.assignee,
    status=payload.status,
    priority=payload.priority,
    description=payload.description if payload.description is not None else UNSET,
    # An explicit null clears deadline/project; leaving the key out keeps them.
    deadline=payload.deadline if "deadline" in sent else UNSET,
    project_id=payload.project if "project" in sent else UNSET,
  )
  t = await svc.update_task(actor, task_id, fields)
  return await svc.present(t)


@router.put("/tasks/{task_id}/move", response_model=TaskOut)
async def move_task(
  task_id: str,
  payload: TaskMoveIn,
  actor: Identity = Depends(get_identity),
  svc: BoardSyncService = Depends(get_board_service),
) -> TaskOut:
  t = await svc.move_task(actor, task_id, payload.status)
  return await svc.present(t)


@router.delete("/tasks/{task_id}", response_model=MessageOut)
async def delete_task(
  task_id: str,
  actor: Identity = Depends(get_identity),
  svc: BoardSyncService = Depends(get_board_service),
) -> MessageOut:
  await svc.delete_task(actor, task_id)
  return MessageOut(message="Task deleted")


@router.post("/tasks/{task_id}/attachments", response_model=AttachmentOut, status_code=status.HTTP_201_CREATED)
async def add_attachment(
  task_id: str,
  payload: AttachmentIn,
  actor: Identity = Depends(get_identity),
  svc: BoardSyncService = Depends(get_board_service),
) -> AttachmentOut:
  meta = AttachmentMeta(name=payload.name, url=payload.url, content_type=payload.contentType, size=payload.size)
  entry = await svc.add_attachment(actor, task_id, meta)
  return AttachmentOut(**entry)


@router.delete("/tasks/{task_id}/attachments/{attachment_id}", response_model=MessageOut)
async def remove_attachment(
  task_id: str,
  attachment_id: str,
  actor: Identity = Depends(get_identity),
  svc: BoardSyncService = Depends(get_board_service),
) -> MessageOut:
  await svc.remove_attachment(actor, task_id, attachment_id)
  return MessageOut(message="Attachment removed")


@router.post("/tasks/{task_id}/voice-notes", response_model=VoiceNoteOut, status_code=status.HTTP_201_CREATED)
async def add_voice_note(
  task_id: str,
  payload: VoiceNoteIn,
  actor: Identity = Depends(get_identity),
  svc: BoardSyncService = Depends(get_board_service),
) -> VoiceNoteOut:
  meta = VoiceNoteMeta(url=payload.url, duration_seconds=payload.durationSeconds, transcript=payload.transcript)
  entry = await svc.add_voice_note(actor, task_id, meta)
  return VoiceNoteOut(**entry)


@router.delete("/tasks/{task_id}/voice-notes/{voice_note_id}", response_model=MessageOut)
async def remove_voice_note(
  task_id: str,
  voice_note_id: str,
  actor: Identity = Depends(get_identity),
  svc: BoardSyncService = Depends(get_board_service),
) -> MessageOut:
  await svc.remove_voice_note(actor, task_id, voice_note_id)
  return MessageOut(message="Voice note removed")
