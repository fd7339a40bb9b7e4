from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from teampulse.deps import get_db, get_identity
from teampulse.models import AuditEvent
from teampulse.policy import Identity
from teampulse.schemas import AuditOut, audit_out

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("", response_model=list[AuditOut])
async def list_audit(
  taskId: str | None = None,
  limit: int = Query(default=200, ge=1, le=1000),
  _: Identity = Depends(get_identity),
  db: AsyncSession = Depends(get_db),
) -> list[AuditOut]:
  q = select(AuditEvent).order_by(AuditEvent.created_at.desc(), AuditEvent.id.asc()).limit(limit)
  if taskId:
    q = q.where(AuditEvent.task_id == taskId)
  res = await db.execute(q)
  return [AuditOut(**audit_out(ev)) for ev in res.scalars().all()]
