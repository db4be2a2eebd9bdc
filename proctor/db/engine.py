"""PostgreSQL access for attempts, answers and penalty history.

DATABASE_URL set (postgresql+asyncpg://...):
  engine, async_session_factory and transaction() are live, and
  api/dependencies.py builds Pg repos on one transaction per request.

DATABASE_URL unset:
  engine and async_session_factory are None and the service runs on the
  process-local in-memory repos.  Good for dev and tests, lost on restart.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from proctor.core.config import SETTINGS

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for the exam and attempt tables."""


engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None

if SETTINGS.database_url:
    engine = create_async_engine(
        SETTINGS.database_url,
        echo=SETTINGS.is_dev,
        pool_size=5,
        max_overflow=10,
        # Exam starts arrive in bursts after idle stretches.
        pool_pre_ping=True,
    )
    async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def transaction() -> AsyncGenerator[AsyncSession, None]:
    """One session, one transaction.

    Commits when the block exits normally, rolls back when it raises.
    Every lifecycle operation runs inside exactly one of these, so scoring
    N answers and closing the attempt either all land or none do.
    """
    if async_session_factory is None:
        raise RuntimeError("DATABASE_URL is not configured")
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def lifespan_db():
    if engine is None:
        logger.info("No DATABASE_URL: attempts are kept in memory")
        yield
        return

    logger.info(
        "Database engine ready: %s", engine.url.render_as_string(hide_password=True)
    )
    yield
    await engine.dispose()
    logger.info("Database engine disposed")
