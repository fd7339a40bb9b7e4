from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from teampulse.deps import get_db, get_identity
from teampulse.errors import NotFoundError
from teampulse.models import User
from teampulse.policy import Identity, assignable_roles
from teampulse.schemas import UserOut, user_out

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=list[UserOut])
async def list_users(
  role: str | None = None,
  actor: Identity = Depends(get_identity),
  db: AsyncSession = Depends(get_db),
) -> list[UserOut]:
  q = select(User).where(User.active.is_(True)).order_by(User.name.asc(), User.id.asc())
  if role:
    q = q.where(User.role == role)
  res = await db.execute(q)
  allowed = {r.value for r in assignable_roles(actor.role)}
  return [UserOut(**user_out(u, assignable=u.role in allowed)) for u in res.scalars().all()]


@router.get("/me", response_model=UserOut)
async def me(actor: Identity = Depends(get_identity), db: AsyncSession = Depends(get_db)) -> UserOut:
  res = await db.execute(select(User).where(User.id == actor.user_id))
  u = res.scalar_one_or_none()
  if u is None:
    raise NotFoundError("User", actor.user_id)
  return UserOut(**user_out(u))
