"""Client-side board cache.

Holds the last known copy of every task keyed by id, plus a per-column
display order that lives only in this session. Server events are applied
by comparing `updatedAt`, so replays and out-of-order deliveries never
roll a task back, and recently deleted ids stay deleted.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterable

import httpx

from teampulse.client.api import ApiError, TaskApiClient
from teampulse.models import BOARD_COLUMNS

logger = logging.getLogger(__name__)

COLUMNS: tuple[str, ...] = tuple(s.value for s in BOARD_COLUMNS)
UPSERT_EVENTS = frozenset({"taskCreated", "taskUpdated", "taskMoved"})
DELETE_EVENT = "taskDeleted"
MAX_TOMBSTONES = 1024


def _stamp(task: dict[str, Any]) -> datetime:
  raw = task.get("updatedAt")
  if isinstance(raw, datetime):
    dt = raw
  elif raw:
    dt = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
  else:
    return datetime.min.replace(tzinfo=timezone.utc)
  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt


class BoardView:
  def __init__(self, api: TaskApiClient, *, max_tombstones: int = MAX_TOMBSTONES) -> None:
    self.api = api
    self.tasks: dict[str, dict[str, Any]] = {}
    self.order: dict[str, list[str]] = {c: [] for c in COLUMNS}
    # Deleted ids in deletion order; the oldest are forgotten past max_tombstones.
    self.deleted: dict[str, None] = {}
    self.max_tombstones = max_tombstones

  def columns(self) -> dict[str, list[dict[str, Any]]]:
    return {c: [self.tasks[i] for i in self.order[c] if i in self.tasks] for c in COLUMNS}

  def _remove_from_columns(self, task_id: str) -> None:
    for ids in self.order.values():
      if task_id in ids:
        ids.remove(task_id)

  def _place(self, task_id: str, status: str, index: int = 0) -> None:
    self._remove_from_columns(task_id)
    ids = self.order.setdefault(status, [])
    ids.insert(max(0, min(index, len(ids))), task_id)

  async def refresh(self) -> None:
    """Replace the cache with the server's task list, keeping local order where it still applies."""
    fresh = await self.api.list_tasks()
    by_status: dict[str, list[str]] = {c: [] for c in COLUMNS}
    for t in fresh:
      by_status.setdefault(t["status"], []).append(t["id"])

    order: dict[str, list[str]] = {}
    for status, server_ids in by_status.items():
      wanted = set(server_ids)
      kept = [i for i in self.order.get(status, []) if i in wanted]
      seen = set(kept)
      # Tasks new to this column go on top, newest first like the server.
      order[status] = [i for i in server_ids if i not in seen] + kept
    self.tasks = {t["id"]: t for t in fresh}
    self.order = order

  def _upsert(self, task: dict[str, Any]) -> bool:
    task_id = task.get("id")
    if not task_id or task_id in self.deleted:
      return False
    current = self.tasks.get(task_id)
    if current is not None and _stamp(task) <= _stamp(current):
      return False
    self.tasks[task_id] = task
    if current is None or current.get("status") != task.get("status") or task_id not in self.order.get(task["status"], []):
      self._place(task_id, task["status"])
    return True

  def _remove(self, task_id: str | None) -> bool:
    if not task_id:
      return False
    self.deleted.pop(task_id, None)
    self.deleted[task_id] = None
    while len(self.deleted) > self.max_tombstones:
      del self.deleted[next(iter(self.deleted))]
    existed = self.tasks.pop(task_id, None) is not None
    self._remove_from_columns(task_id)
    return existed

  def apply_event(self, name: str, payload: dict[str, Any] | None) -> bool:
    """Apply one server event; returns True if the cache changed."""
    payload = payload or {}
    if name in UPSERT_EVENTS:
      return self._upsert(payload)
    if name == DELETE_EVENT:
      return self._remove(payload.get("id"))
    return False

  async def listen(self, messages: AsyncIterable[Any]) -> int:
    applied = 0
    async for msg in messages:
      if isinstance(msg, (str, bytes)):
        try:
          msg = json.loads(msg)
        except ValueError:
          logger.warning("ignoring non-JSON board message")
          continue
      if not isinstance(msg, dict):
        continue
      if self.apply_event(str(msg.get("event") or ""), msg.get("data")):
        applied += 1
    return applied

  async def drop(self, task_id: str, to_status: str, to_index: int = 0) -> dict[str, Any]:
    task = self.tasks[task_id]
    if task["status"] == to_status:
      self._place(task_id, to_status, to_index)
      return task

    saved_task = dict(task)
    saved_order = {c: list(ids) for c, ids in self.order.items()}
    self.tasks[task_id] = {**task, "status": to_status}
    self._place(task_id, to_status, to_index)
    try:
      moved = await self.api.move_task(task_id, to_status)
    except (ApiError, httpx.HTTPError) as exc:
      logger.info("move of %s to %s failed (%s); resyncing", task_id, to_status, exc)
      self.tasks[task_id] = saved_task
      self.order = saved_order
      try:
        await self.refresh()
      except (ApiError, httpx.HTTPError):
        logger.warning("resync after failed move of %s also failed", task_id, exc_info=True)
      raise
    self._upsert(moved)
    return self.tasks.get(task_id, moved)
