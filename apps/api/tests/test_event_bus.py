from __future__ import annotations

import pytest

from teampulse.events import EventBus, TaskEvent, TaskEventType
from teampulse.policy import Identity, Role


def _moved(task_id: str, status: str = "Done") -> TaskEvent:
  return TaskEvent(TaskEventType.TASK_MOVED, {"id": task_id, "status": status})


@pytest.mark.anyio
async def test_publish_fans_out_to_every_subscriber() -> None:
  bus = EventBus()
  a = bus.subscribe(Identity(user_id="u1", role=Role.STUDENT))
  b = bus.subscribe()
  assert bus.publish(_moved("t1")) == 2
  assert (await a.get()).to_message() == {"event": "taskMoved", "data": {"id": "t1", "status": "Done"}}
  assert (await b.get()).task_id == "t1"
  assert a.user_id == "u1" and b.user_id is None


@pytest.mark.anyio
async def test_full_queue_drops_only_for_slow_subscriber() -> None:
  bus = EventBus(queue_size=2)
  slow = bus.subscribe()
  fast = bus.subscribe()
  for i in range(2):
    bus.publish(_moved(f"t{i}"))
  await fast.get()
  await fast.get()

  assert bus.publish(_moved("t2")) == 1
  assert slow.dropped == 1
  assert (await fast.get()).task_id == "t2"
  assert [slow.get_nowait().task_id for _ in range(2)] == ["t0", "t1"]
  assert bus.snapshot() == {"subscribers": 2, "eventsPublished": 3, "eventsDelivered": 5, "eventsDropped": 1}


@pytest.mark.anyio
async def test_unsubscribed_clients_miss_events() -> None:
  bus = EventBus()
  sub = bus.subscribe()
  bus.unsubscribe(sub)
  bus.unsubscribe(sub)
  assert bus.subscriber_count == 0
  assert bus.publish(_moved("t1")) == 0
  assert sub.queue.empty()

  late = bus.subscribe()
  assert late.queue.empty()
