"""In-process fan-out of task lifecycle events to connected clients.

Delivery is best effort: every subscriber owns a bounded queue, `publish`
never waits on a subscriber, and a client that is not subscribed when an
event is published never sees it. Reconnecting clients resynchronize by
refetching the task list.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any
from uuid import uuid4

from teampulse.policy import Identity

logger = logging.getLogger(__name__)


class TaskEventType(str, Enum):
  TASK_CREATED = "taskCreated"
  TASK_UPDATED = "taskUpdated"
  TASK_MOVED = "taskMoved"
  TASK_DELETED = "taskDeleted"


@dataclass(frozen=True)
class TaskEvent:
  type: TaskEventType
  payload: dict[str, Any]
  published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

  @property
  def task_id(self) -> str | None:
    return self.payload.get("id")

  def to_message(self) -> dict[str, Any]:
    return {"event": self.type.value, "data": self.payload}


@dataclass
class Subscription:
  id: str
  identity: Identity | None
  queue: asyncio.Queue
  connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
  dropped: int = 0

  @property
  def user_id(self) -> str | None:
    return self.identity.user_id if self.identity else None

  async def get(self) -> TaskEvent:
    return await self.queue.get()

  def get_nowait(self) -> TaskEvent:
    return self.queue.get_nowait()


class EventBus:
  def __init__(self, *, queue_size: int = 256) -> None:
    self._queue_size = max(1, int(queue_size))
    self._subscribers: dict[str, Subscription] = {}
    self._lock = Lock()
    self.published = 0
    self.delivered = 0
    self.dropped = 0

  def subscribe(self, identity: Identity | None = None) -> Subscription:
    sub = Subscription(id=uuid4().hex, identity=identity, queue=asyncio.Queue(maxsize=self._queue_size))
    with self._lock:
      self._subscribers[sub.id] = sub
    logger.info("event subscriber %s connected (user=%s)", sub.id, sub.user_id)
    return sub

  def unsubscribe(self, sub: Subscription) -> None:
    with self._lock:
      removed = self._subscribers.pop(sub.id, None)
    if removed is not None:
      logger.info("event subscriber %s disconnected (dropped=%d)", sub.id, sub.dropped)

  @property
  def subscriber_count(self) -> int:
    with self._lock:
      return len(self._subscribers)

  def publish(self, event: TaskEvent) -> int:
    """Queue `event` for every current subscriber; returns how many accepted it."""
    with self._lock:
      subscribers = list(self._subscribers.values())
      self.published += 1
    accepted = 0
    for sub in subscribers:
      try:
        sub.queue.put_nowait(event)
        accepted += 1
      except asyncio.QueueFull:
        sub.dropped += 1
        with self._lock:
          self.dropped += 1
        logger.warning("event queue full for subscriber %s; dropped %s for %s", sub.id, event.type.value, event.task_id)
    with self._lock:
      self.delivered += accepted
    logger.debug("published %s for %s to %d subscribers", event.type.value, event.task_id, accepted)
    return accepted

  def snapshot(self) -> dict[str, int]:
    with self._lock:
      return {
        "subscribers": len(self._subscribers),
        "eventsPublished": self.published,
        "eventsDelivered": self.delivered,
        "eventsDropped": self.dropped,
      }
