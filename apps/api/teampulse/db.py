from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from teampulse.config import settings


def make_engine(url: str) -> AsyncEngine:
  if url.startswith("sqlite"):
    # aiosqlite connections are bound to the loop that opened them; don't pool them.
    return create_async_engine(url, poolclass=NullPool, connect_args={"timeout": 30})
  return create_async_engine(url, pool_pre_ping=True)


engine = make_engine(settings.database_url)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)
