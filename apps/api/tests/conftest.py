from __future__ import annotations

import os
import secrets
import sys
import tempfile
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{Path(tempfile.gettempdir()) / 'teampulse_test.db'}")
os.environ.setdefault("APP_SECRET", "test-secret-for-hmac-only")

from teampulse.config import settings
from teampulse.db import SessionLocal, engine
from teampulse.main import create_app
from teampulse.models import ApiToken, AuditEvent, Base, Task, User
from teampulse.policy import Identity, Role
from teampulse.seed import issue_token


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


async def _reset_db() -> None:
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)
  async with SessionLocal() as db:
    await db.execute(delete(AuditEvent))
    await db.execute(delete(Task))
    await db.execute(delete(ApiToken))
    await db.execute(delete(User))
    await db.commit()
  await engine.dispose()


@pytest.fixture(autouse=True)
async def _clean_between_tests() -> None:
  if not settings.is_test_db():
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to a *_test database (e.g. teampulse_test)."
    )
  await _reset_db()
  yield
  await _reset_db()


@pytest.fixture
def app():
  return create_app()


@pytest.fixture
async def client(app) -> AsyncClient:
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


async def make_user(role: str, *, name: str | None = None, active: bool = True) -> tuple[User, str]:
  """Create a user with a fresh API token; returns (user, plaintext token)."""
  async with SessionLocal() as db:
    u = User(
      email=f"{role}-{secrets.token_hex(4)}@teampulse.test",
      name=name or role.title(),
      role=role,
      active=active,
    )
    db.add(u)
    await db.flush()
    token = await issue_token(db, u, name="test")
    await db.commit()
    return u, token


def auth(token: str) -> dict[str, str]:
  return {"Authorization": f"Bearer {token}"}


def identity_of(user: User) -> Identity:
  return Identity(user_id=user.id, role=Role(user.role), name=user.name)
