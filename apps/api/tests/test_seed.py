from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from teampulse.db import SessionLocal
from teampulse.models import Task, User
from teampulse.seed import seed

from conftest import auth


@pytest.mark.anyio
async def test_seed_is_idempotent_and_tokens_work(client: AsyncClient, tmp_path, monkeypatch) -> None:
  monkeypatch.setenv("BOOTSTRAP_CREDENTIALS_DIR", str(tmp_path))
  monkeypatch.setenv("SEED_DEMO_TASKS", "true")
  await seed()
  await seed()

  async with SessionLocal() as db:
    roles = sorted((await db.execute(select(User.role))).scalars().all())
    task_count = (await db.execute(select(func.count()).select_from(Task))).scalar_one()
  assert roles == ["coach", "mentor", "student"]
  assert task_count == 4

  lines = (tmp_path / "bootstrap_tokens.txt").read_text(encoding="utf-8").splitlines()
  coach_line = next(ln for ln in lines if ln.startswith("coach@"))
  token = coach_line.split("token=", 1)[1]
  me = await client.get("/users/me", headers=auth(token))
  assert me.status_code == 200
  assert me.json()["role"] == "coach"

  board = await client.get("/board", headers=auth(token))
  assert [len(c["tasks"]) for c in board.json()["columns"]] == [1, 1, 1, 1]
