from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from teampulse.db import SessionLocal
from teampulse.models import ApiToken, Task, TaskPriority, TaskStatus, User
from teampulse.security import api_token_hash, api_token_new

SEED_USERS = [
  ("coach@teampulse.local", "Coach", "coach"),
  ("mentor@teampulse.local", "Mentor", "mentor"),
  ("student@teampulse.local", "Student", "student"),
]


async def ensure_user(db: AsyncSession, *, email: str, name: str, role: str) -> tuple[User, bool]:
  res = await db.execute(select(User).where(User.email == email))
  u = res.scalar_one_or_none()
  if u:
    return u, False
  u = User(email=email, name=name, role=role, active=True)
  db.add(u)
  await db.flush()
  return u, True


async def issue_token(db: AsyncSession, user: User, *, name: str = "seed") -> str:
  """Stage a new API token for `user` and return the plaintext; only its hash is stored."""
  token, hint = api_token_new()
  db.add(ApiToken(user_id=user.id, name=name, token_hash=api_token_hash(token), token_hint=hint))
  return token


def _truthy(value: str | None) -> bool:
  return (value or "").strip().lower() in ("1", "true", "yes", "y")


async def seed() -> None:
  async with SessionLocal() as db:
    boot_lines: list[str] = []
    users: dict[str, User] = {}
    for email, name, role in SEED_USERS:
      u, created = await ensure_user(db, email=email, name=name, role=role)
      users[role] = u
      if created:
        token = await issue_token(db, u)
        boot_lines.append(f"{email} ({role}) token={token}")

    if _truthy(os.getenv("SEED_DEMO_TASKS")):
      any_task = (await db.execute(select(Task.id).limit(1))).scalar_one_or_none()
      if not any_task:
        now = datetime.now(timezone.utc)
        samples = [
          ("Read the onboarding notes", TaskStatus.TODO, TaskPriority.MEDIUM, users["student"]),
          ("Pair on the first feature", TaskStatus.IN_PROGRESS, TaskPriority.HIGH, users["mentor"]),
          ("Review sprint goals", TaskStatus.REVIEW, TaskPriority.LOW, users["coach"]),
          ("Set up the dev environment", TaskStatus.DONE, TaskPriority.CRITICAL, users["student"]),
        ]
        for idx, (title, status, priority, assignee) in enumerate(samples):
          stamp = now + timedelta(microseconds=idx)
          db.add(
            Task(
              title=title,
              description="Demo task",
              assignee_id=assignee.id,
              status=status.value,
              priority=priority.value,
              deadline=now + timedelta(days=idx + 1),
              attachments=[],
              voice_notes=[],
              created_by=users["coach"].id,
              created_at=stamp,
              updated_at=stamp,
            )
          )

    await db.commit()
    if boot_lines:
      out_dir = Path(os.getenv("BOOTSTRAP_CREDENTIALS_DIR", "data"))
      out_dir.mkdir(parents=True, exist_ok=True)
      out_file = out_dir / "bootstrap_tokens.txt"
      stamp = datetime.now(timezone.utc).isoformat()
      out_file.write_text(f"[{stamp}]\n" + "\n".join(boot_lines) + "\n", encoding="utf-8")
      print("TeamPulse seed tokens created:")
      for ln in boot_lines:
        print(f"  {ln}")
      print(f"Saved to {out_file}")


def main() -> None:
  asyncio.run(seed())


if __name__ == "__main__":
  main()
