"""Board websocket: streams task events to one connected client.

Connect with `ws://host/ws?token=<api token>`. Server messages are
`{"event": <name>, "data": {...}}`; the client may send `{"event": "ping"}`
and gets `{"event": "pong"}` back. Events published while a client is
disconnected are not replayed; clients refetch `/tasks` after reconnecting.
"""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect

from teampulse.config import settings
from teampulse.db import SessionLocal
from teampulse.deps import identity_from_token
from teampulse.events import EventBus, Subscription
from teampulse.metrics import RuntimeMetrics

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

CLOSE_UNAUTHORIZED = 4401


class _Session:
  def __init__(self, websocket: WebSocket, sub: Subscription) -> None:
    self.websocket = websocket
    self.sub = sub
    self._send_lock = asyncio.Lock()

  async def send(self, message: dict) -> None:
    async with self._send_lock:
      await self.websocket.send_json(message)

  async def pump_events(self) -> None:
    interval = max(1, settings.ws_ping_interval_seconds)
    while True:
      try:
        event = await asyncio.wait_for(self.sub.get(), timeout=interval)
      except asyncio.TimeoutError:
        await self.send({"event": "heartbeat", "data": {}})
        continue
      await self.send(event.to_message())

  async def read_client(self) -> None:
    while True:
      frame = await self.websocket.receive()
      if frame["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(frame.get("code", 1000))
      raw = frame.get("text")
      if raw is None:
        await self.send({"event": "error", "data": {"message": "Binary frames are not supported"}})
        continue
      try:
        message = json.loads(raw)
      except ValueError:
        await self.send({"event": "error", "data": {"message": "Invalid JSON"}})
        continue
      if isinstance(message, dict) and message.get("event") == "ping":
        await self.send({"event": "pong", "data": {}})


@router.websocket("/ws")
async def board_socket(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
  bus: EventBus = websocket.app.state.event_bus
  metrics: RuntimeMetrics = websocket.app.state.metrics

  async with SessionLocal() as db:
    try:
      identity = await identity_from_token(db, token)
    except HTTPException as exc:
      await websocket.accept()
      await websocket.close(code=CLOSE_UNAUTHORIZED, reason=str(exc.detail))
      return

  await websocket.accept()
  sub = bus.subscribe(identity)
  metrics.ws_opened()
  session = _Session(websocket, sub)
  tasks: list[asyncio.Task] = []
  try:
    await session.send({"event": "connected", "data": {"userId": identity.user_id, "role": identity.role.value}})
    tasks = [asyncio.create_task(session.pump_events()), asyncio.create_task(session.read_client())]
    done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    for t in done:
      exc = t.exception()
      if exc is not None and not isinstance(exc, WebSocketDisconnect):
        logger.warning("websocket session %s ended with %s", sub.id, exc.__class__.__name__)
  except WebSocketDisconnect:
    pass
  finally:
    for t in tasks:
      t.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    bus.unsubscribe(sub)
    metrics.ws_closed()
