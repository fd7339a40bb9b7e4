from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from teampulse.board import BoardSyncService
from teampulse.db import SessionLocal
from teampulse.events import EventBus
from teampulse.logging_config import user_id_var
from teampulse.metrics import RuntimeMetrics
from teampulse.models import ApiToken, User
from teampulse.policy import Identity, Role
from teampulse.security import api_token_hash
from teampulse.store import TaskStore


async def get_db() -> AsyncSession:
  async with SessionLocal() as session:
    yield session


def bearer_token(request: Request) -> str | None:
  auth = request.headers.get("authorization")
  if auth and auth.lower().startswith("bearer "):
    return auth.split(" ", 1)[1].strip()
  # Older web clients send the raw token in x-auth-token.
  legacy = request.headers.get("x-auth-token")
  if legacy is not None:
    return legacy.strip()
  return None


async def identity_from_token(db: AsyncSession, token: str | None) -> Identity:
  if token is None:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
  if not token:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  h = api_token_hash(token)
  tres = await db.execute(select(ApiToken).where(ApiToken.token_hash == h, ApiToken.revoked_at.is_(None)))
  t = tres.scalar_one_or_none()
  if not t:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  ures = await db.execute(select(User).where(User.id == t.user_id))
  u = ures.scalar_one_or_none()
  if not u:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
  if not u.active:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User disabled")
  try:
    role = Role(u.role)
  except ValueError:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unknown role") from None
  return Identity(user_id=u.id, role=role, name=u.name)


async def get_identity(request: Request, db: AsyncSession = Depends(get_db)) -> Identity:
  ident = await identity_from_token(db, bearer_token(request))
  user_id_var.set(ident.user_id)
  return ident


def get_event_bus(request: Request) -> EventBus:
  return request.app.state.event_bus


def get_metrics(request: Request) -> RuntimeMetrics:
  return request.app.state.metrics


def get_task_store(db: AsyncSession = Depends(get_db)) -> TaskStore:
  return TaskStore(db)


def get_board_service(
  store: TaskStore = Depends(get_task_store),
  bus: EventBus = Depends(get_event_bus),
) -> BoardSyncService:
  return BoardSyncService(store, bus)
