# dealflow/db.py
"""
Local SQLite (aiosqlite) for caches and audit rows. GHL data is never stored here.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from .config import settings
from .models import Base

engine: AsyncEngine = create_async_engine(settings.DEALDESK_DB_URL, echo=False, future=True)

AsyncSessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_models(bind: AsyncEngine | None = None) -> None:
    """create_all; safe to call on every start."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncSession:
    """
    FastAPI dependency that yields a session. Routes commit explicitly.
    """
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def async_session() -> AsyncSession:
    """Session for jobs and scripts (scheduler, smoke checks)."""
    async with AsyncSessionLocal() as session:
        yield session
